from txscope.infrastructure.database.repositories.base_repository import (
    POSTGRES_TX_KEY,
    TIMESCALE_TX_KEY,
    BaseRepository,
)

__all__ = ["BaseRepository", "POSTGRES_TX_KEY", "TIMESCALE_TX_KEY"]
