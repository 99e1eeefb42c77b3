"""
Neural networks module: layers, network drivers, losses and optimizers.
"""
from .layers import (
    Identity,
    Linear,
    LinearNoBias,
    Add,
    Constant,
    MultiplyConstant,
    Sigmoid,
    Tanh,
    ReLU,
    LeakyReLU,
    HardTanH,
    LogSoftMax,
    Softmax,
    FlexibleReLU,
    Select,
    Join,
    Lookup
)
from ._conv import (
    Convolution,
    AtrousConvolution,
    TransposedConvolution,
    BilinearInterpolation
)
from ._merge import (
    Sequential,
    AddMerge,
    MultiplyMerge,
    Concat
)
from ._dropout import (Dropout, AlphaDropout)
from ._normalization import (BatchNorm, LayerNorm)
from ._recurrent import (
    RecurrentCell,
    LSTM,
    FastLSTM,
    GRU
)
from ._network import FFN
from ._rnn import RNN
from .losses import (NegativeLogLikelihood, MeanSquaredError)
from .init import (
    RandomInitialization,
    ConstInitialization,
    GaussianInitialization,
    GlorotInitialization
)
from .optimizers import (
    SGDOptimizer,
    AdamOptimizer,
    get_optimizer
)

__all__ = [
    'Identity',
    'Linear',
    'LinearNoBias',
    'Add',
    'Constant',
    'MultiplyConstant',
    'Sigmoid',
    'Tanh',
    'ReLU',
    'LeakyReLU',
    'HardTanH',
    'LogSoftMax',
    'Softmax',
    'FlexibleReLU',
    'Select',
    'Join',
    'Lookup',
    'Convolution',
    'AtrousConvolution',
    'TransposedConvolution',
    'BilinearInterpolation',
    'Sequential',
    'AddMerge',
    'MultiplyMerge',
    'Concat',
    'Dropout',
    'AlphaDropout',
    'BatchNorm',
    'LayerNorm',
    'RecurrentCell',
    'LSTM',
    'FastLSTM',
    'GRU',
    'FFN',
    'RNN',
    'NegativeLogLikelihood',
    'MeanSquaredError',
    'RandomInitialization',
    'ConstInitialization',
    'GaussianInitialization',
    'GlorotInitialization',
    'SGDOptimizer',
    'AdamOptimizer',
    'get_optimizer'
]
