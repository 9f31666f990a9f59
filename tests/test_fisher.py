"""
Tests for Fisher's exact test.
"""
import pytest
from scipy import stats

from genomehmm.hypothesis.fisher import Alternative, FisherExactTest, TwoSidedPolicy

TABLES = [
    (2, 3, 2, 6),
    (8, 2, 1, 5),
    (0, 10, 7, 3),
    (12, 5, 29, 2),
    (3, 1, 1, 3),
    (100, 120, 80, 95),
]


class TestFisherExactTest:

    @pytest.mark.parametrize("table", TABLES)
    @pytest.mark.parametrize("alternative,name", [
        (Alternative.LESS, 'less'),
        (Alternative.GREATER, 'greater'),
        (Alternative.TWO_SIDED, 'two-sided'),
    ])
    def test_matches_scipy(self, table, alternative, name):
        a, b, c, d = table
        _, expected = stats.fisher_exact([[a, b], [c, d]], alternative=name)
        assert FisherExactTest.for_table(a, b, c, d)(alternative) == pytest.approx(expected, rel=1e-6)

    def test_symmetric_table(self):
        assert FisherExactTest(13, 5, 4, 2)(Alternative.TWO_SIDED) == pytest.approx(1.0)

    def test_absolute_cutoff_policy(self):
        test = FisherExactTest(13, 5, 4, 2, policy=TwoSidedPolicy.ABSOLUTE_CUTOFF)
        assert test(Alternative.TWO_SIDED) == pytest.approx(1.0)

    def test_policies_agree_on_clear_case(self):
        relative = FisherExactTest.for_table(8, 2, 1, 5)(Alternative.TWO_SIDED)
        absolute = FisherExactTest.for_table(8, 2, 1, 5, policy=TwoSidedPolicy.ABSOLUTE_CUTOFF)(
            Alternative.TWO_SIDED)
        assert absolute == pytest.approx(relative)

    def test_k_outside_support(self):
        with pytest.raises(ValueError):
            FisherExactTest(10, 3, 4, 5)
