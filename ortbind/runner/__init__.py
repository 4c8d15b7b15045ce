from .common import Runner
from .direct import DirectRunner
from .iobinding import IoBindingRunner
