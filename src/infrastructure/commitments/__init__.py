from src.infrastructure.commitments.in_memory import InMemoryCommitmentRepository
from src.infrastructure.commitments.postgres import PostgresCommitmentRepository

__all__ = ["InMemoryCommitmentRepository", "PostgresCommitmentRepository"]
