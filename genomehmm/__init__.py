"""
genomehmm - maximum-likelihood hidden Markov models and mixtures over
genomic count tracks, with posterior FDR control.
"""

__version__ = "2.0.0"

from genomehmm.config import FitSettings
from genomehmm.core.emission import (
    CategoricalEmissionScheme,
    ConstantIntegerEmissionScheme,
    NegBinEmissionScheme,
    NegBinRegressionEmissionScheme,
    PoissonEmissionScheme,
    PoissonRegressionEmissionScheme,
)
from genomehmm.core.hmm import MLHMM, ConstrainedEmissions, FreeEmissions
from genomehmm.core.mixture import MLFreeMixture, ZeroPoissonMixture
from genomehmm.core.fitter import Fitter, poisson_hmm_guess
from genomehmm.core.monitor import FitResult
from genomehmm.core.model_io import load_model, save_model, dumps_model, loads_model
from genomehmm.hypothesis import Fdr, NullHypothesis, benjamini_hochberg
