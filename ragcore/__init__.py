"""
ragcore - retrieval core for private knowledge bases.

Embedding generation, vector storage and similarity search, knowledge
indexing, and prompt/context assembly for retrieval-augmented generation.
"""

__version__ = "1.0.0"
