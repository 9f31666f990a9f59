"""Multiple testing, FDR control and p-value tests."""

from genomehmm.hypothesis.multiple import benjamini_hochberg
from genomehmm.hypothesis.fdr import Fdr, NullHypothesis
from genomehmm.hypothesis.fisher import Alternative, FisherExactTest, TwoSidedPolicy
from genomehmm.hypothesis.stouffer import StoufferLiptakTest
