"""HBK LAN-XI data acquisition: recorder sessions and HDF5 export."""

__version__ = "0.1.0"
