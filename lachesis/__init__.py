"""Lachesis aBFT consensus: event hashes, storage, frame calculation, Atropos election and ASCII DAG tools."""

__version__ = "0.1.0"