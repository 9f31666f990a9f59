"""
Unit tests for model save/load.
"""
import json
import os

import pytest
import numpy as np
import pandas as pd

from genomehmm.core.emission import (
    CategoricalEmissionScheme,
    ConstantIntegerEmissionScheme,
    NegBinEmissionScheme,
    NegBinRegressionEmissionScheme,
    PoissonEmissionScheme,
)
from genomehmm.core.errors import ModelFormatError
from genomehmm.core.hmm import MLHMM
from genomehmm.core.mixture import MLFreeMixture, ZeroPoissonMixture
from genomehmm.core.model_io import (
    dumps_model,
    load_model,
    loads_model,
    registered_types,
    save_model,
)


@pytest.fixture
def constrained_model():
    schemes = [
        ConstantIntegerEmissionScheme(0),
        NegBinEmissionScheme(3.3, 1.7),
        PoissonEmissionScheme(0.123456789),
        CategoricalEmissionScheme([0.1, 0.2, 0.7]),
    ]
    return MLHMM.constrained(
        [[0, 3], [1, 3], [2, 3]], schemes,
        prior_probabilities=[0.2, 0.3, 0.5],
        transition_probabilities=[[0.8, 0.2, 0.0], [0.1, 0.7, 0.2], [0.0, 0.3, 0.7]],
    )


@pytest.fixture
def mixed_table():
    return pd.DataFrame({'d0': [0, 1, 2, 5, 9, 0], 'd1': [0, 1, 2, 2, 1, 0]})


def _log_probabilities(model, df):
    return np.column_stack([model.log_probabilities(s, df) for s in range(model.num_states)])


class TestRoundTrip:

    def test_constrained_hmm(self, constrained_model, mixed_table, temp_dir):
        path = os.path.join(temp_dir, 'model.json')
        save_model(constrained_model, path)
        loaded = load_model(path)

        assert isinstance(loaded, MLHMM)
        np.testing.assert_array_equal(loaded.log_prior_probabilities,
                                      constrained_model.log_prior_probabilities)
        np.testing.assert_array_equal(loaded.log_transition_probabilities,
                                      constrained_model.log_transition_probabilities)
        np.testing.assert_array_equal(_log_probabilities(loaded, mixed_table),
                                      _log_probabilities(constrained_model, mixed_table))
        np.testing.assert_array_equal(loaded.emissions.emission_dimension_map, [0, 0, 0, 1])
        assert loaded.emissions.scheme(0, 1) is loaded.emissions.scheme(2, 1)

    def test_infinite_values(self):
        model = MLHMM.free(
            [[NegBinEmissionScheme(2.0, np.inf)], [PoissonEmissionScheme(1.0)]],
            transition_probabilities=[[1.0, 0.0], [0.5, 0.5]],
        )
        loaded = loads_model(dumps_model(model))
        assert loaded.log_transition_probabilities[0, 1] == -np.inf
        assert loaded.emissions.scheme(0, 0).failures == np.inf

    def test_free_mixture(self, mixed_table):
        mixture = MLFreeMixture(
            [[PoissonEmissionScheme(1.0), PoissonEmissionScheme(0.5)],
             [PoissonEmissionScheme(6.0), PoissonEmissionScheme(2.0)]],
            weights=[0.25, 0.75],
        )
        loaded = loads_model(dumps_model(mixture))
        assert isinstance(loaded, MLFreeMixture)
        np.testing.assert_array_equal(loaded.log_weights, mixture.log_weights)
        assert loaded.log_likelihood(mixed_table) == mixture.log_likelihood(mixed_table)

    def test_regression_schemes(self):
        df = pd.DataFrame({'d0': [0, 3, 8, 1], 'x1': [0.1, 0.7, 1.9, 0.3]})
        model = MLHMM.free([[NegBinRegressionEmissionScheme(['x1'], [0.2, 0.9], 3.7)],
                            [PoissonEmissionScheme(2.0)]])
        loaded = loads_model(dumps_model(model))
        scheme = loaded.emissions.scheme(0, 0)
        assert isinstance(scheme, NegBinRegressionEmissionScheme)
        assert scheme.covariate_labels == ['x1']
        assert scheme.failures == 3.7
        np.testing.assert_array_equal(_log_probabilities(loaded, df), _log_probabilities(model, df))

    def test_zero_poisson_mixture(self):
        df = pd.DataFrame({'y': [0, 3, 8, 1], 'x1': [0.1, 0.7, 1.9, 0.3]})
        mixture = ZeroPoissonMixture(['x1'], [[0.0, 0.5], [2.0, 0.3]], weights=[0.1, 0.6, 0.3])
        loaded = loads_model(dumps_model(mixture))
        assert isinstance(loaded, ZeroPoissonMixture)
        np.testing.assert_array_equal(loaded.log_weights, mixture.log_weights)
        assert loaded.log_likelihood(df) == mixture.log_likelihood(df)

    def test_envelope_layout(self, constrained_model):
        data = json.loads(dumps_model(constrained_model))
        assert data['type_tag'] == 'genomehmm.MLHMM'
        assert data['format_version'] == 1
        assert data['payload']['emissions']['type_tag'] == 'genomehmm.ConstrainedEmissions'

    def test_non_json_extension_warns(self, constrained_model, temp_dir):
        path = os.path.join(temp_dir, 'model.bin')
        with pytest.warns(UserWarning):
            written = save_model(constrained_model, path)
        assert written.endswith('.json')
        assert os.path.exists(written)

    def test_registry(self):
        types = registered_types()
        assert 'genomehmm.MLHMM' in types
        assert 'genomehmm.PoissonEmissionScheme' in types


class TestFormatErrors:

    def test_unknown_type_tag(self, constrained_model):
        data = json.loads(dumps_model(constrained_model))
        data['type_tag'] = 'genomehmm.Unknown'
        with pytest.raises(ModelFormatError, match="unknown"):
            loads_model(json.dumps(data))

    def test_version_mismatch(self, constrained_model):
        data = json.loads(dumps_model(constrained_model))
        data['format_version'] = 0
        with pytest.raises(ModelFormatError, match="version"):
            loads_model(json.dumps(data))

    def test_nested_version_mismatch(self, constrained_model):
        data = json.loads(dumps_model(constrained_model))
        data['payload']['emissions']['payload']['schemes'][1]['format_version'] = 99
        with pytest.raises(ModelFormatError):
            loads_model(json.dumps(data))

    def test_malformed(self):
        with pytest.raises(ModelFormatError):
            loads_model("{not json")
        with pytest.raises(ModelFormatError):
            loads_model(json.dumps({'payload': {}}))
