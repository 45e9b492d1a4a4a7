"""
Local vector index and embedding client.

Vectors live in their own SQLite file next to the record store, keyed by the
same (external_id, source) identity. Search loads the matrix with numpy and
ranks by cosine similarity, which is plenty for an archive of this size.
"""

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np
import openai
from sqlalchemy import Column, DateTime, Float, Integer, String, Text, create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from .normalize import utcnow
from .retry import ConfigError, StorageError

VectorBase = declarative_base()

DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"


class VectorEntry(VectorBase):
    __tablename__ = "vectors"

    external_id = Column(String, primary_key=True)
    source = Column(String, primary_key=True)
    vector = Column(Text, nullable=False)  # JSON list of floats

    title = Column(String)
    author = Column(String)
    url = Column(String)
    popularity = Column(Integer)
    relevance_score = Column(Float)
    summary = Column(Text)
    updated_at = Column(DateTime, default=utcnow)


_METADATA_FIELDS = ("title", "author", "url", "popularity", "relevance_score", "summary")


def cosine_similarity(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    """Cosine similarity of each row of ``matrix`` with ``query``."""
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    norms[norms == 0] = 1.0
    return matrix @ query / norms


class VectorIndex:
    """Bulk-upsert and nearest-neighbour search over stored vectors."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._engine = create_engine(f"sqlite:///{self.db_path}")
            VectorBase.metadata.create_all(self._engine)
            self._session = sessionmaker(bind=self._engine, expire_on_commit=False)()
        except SQLAlchemyError as e:
            raise StorageError(f"Could not open vector index {self.db_path}: {e}") from e

    def __enter__(self) -> "VectorIndex":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        if self._session is None:
            return
        try:
            self._session.close()
        finally:
            self._engine.dispose()
            self._session = None

    def upsert(self, items: Iterable[Mapping[str, Any]]) -> int:
        """
        Insert or replace vectors in one transaction.

        Args:
            items: Mappings with external_id, source, vector and optional
                display metadata (title, url, summary, ...)

        Returns:
            Number of vectors written
        """
        written = 0
        try:
            for item in items:
                entry = VectorEntry(
                    external_id=str(item["external_id"]),
                    source=str(item["source"]),
                    vector=json.dumps([float(v) for v in item["vector"]]),
                    updated_at=utcnow(),
                    **{name: item.get(name) for name in _METADATA_FIELDS},
                )
                self._session.merge(entry)
                written += 1
            self._session.commit()
        except SQLAlchemyError as e:
            self._session.rollback()
            raise StorageError(f"Vector upsert failed: {e}") from e
        return written

    def count(self) -> int:
        return self._session.query(VectorEntry).count()

    def search(
        self,
        vector: Sequence[float],
        limit: int = 10,
        min_score: Optional[float] = None,
    ) -> List[Dict[str, Any]]:
        """
        Nearest neighbours of ``vector`` by cosine similarity.

        Args:
            vector: Query embedding
            limit: Maximum results
            min_score: Only return records with relevance_score >= min_score
        """
        query = self._session.query(VectorEntry)
        if min_score is not None:
            query = query.filter(VectorEntry.relevance_score >= min_score)
        entries = query.all()
        if not entries:
            return []

        matrix = np.array([json.loads(e.vector) for e in entries], dtype=float)
        similarities = cosine_similarity(matrix, np.asarray(vector, dtype=float))
        order = np.argsort(-similarities)[:limit]

        results = []
        for i in order:
            entry = entries[int(i)]
            results.append({
                "external_id": entry.external_id,
                "source": entry.source,
                "similarity": float(similarities[i]),
                **{name: getattr(entry, name) for name in _METADATA_FIELDS},
            })
        return results


class OpenAIEmbedder:
    """Batch text embeddings through the OpenAI API."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str = DEFAULT_EMBEDDING_MODEL,
        timeout: float = 30.0,
        client=None,
    ):
        if client is None:
            if not api_key:
                raise ConfigError("OPENAI_API_KEY environment variable is required for embeddings")
            client = openai.OpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        self._client = client
        self.model = model

    def embed(self, texts: List[str]) -> List[List[float]]:
        response = self._client.embeddings.create(model=self.model, input=texts)
        return [item.embedding for item in response.data]
