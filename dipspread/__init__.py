"""dipspread: virion / DIP co-infection spread on a hexagonal cell lattice.

Discrete stochastic cellular automaton coupling lytic virus spread,
defective interfering particle (DIP) interference and interferon (IFN)
antiviral signalling. See `dipspread.model.run_simulation` for the entry point.
"""

__version__ = "0.1.0"
