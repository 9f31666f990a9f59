"""Exception and warning types raised by the genomehmm core."""


class ModelConstructionError(ValueError):
    """Invalid model parameters passed at construction time."""


class NumericalError(ArithmeticError):
    """A NaN (or otherwise invalid value) appeared in a log-probability table."""


class ModelFormatError(ValueError):
    """A serialized model has an unknown type tag or a stale format version."""


class LikelihoodDecreaseWarning(RuntimeWarning):
    """EM log-likelihood went down between two iterations."""
