"""
Partially observed Markov processes in python.

"""

__version__ = '0.1'

from pomp.filtering import ParticleFilter, LgcpFilter, multi_filter
from pomp.mcmc import PMMH
