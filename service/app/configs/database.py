from pydantic import BaseModel, Field


class PostgresConfig(BaseModel):
    Host: str = Field(default="postgresql", description="PostgreSQL host")
    Port: int = Field(default=5432, description="PostgreSQL port")
    User: str = Field(default="postgres", description="PostgreSQL user")
    Password: str = Field(default="postgres", description="PostgreSQL password")
    DBName: str = Field(default="forfeit", description="PostgreSQL database name")
    PoolSize: int = Field(default=5, description="Number of persistent connections in the pool")


class SQLiteConfig(BaseModel):
    Path: str = Field(default="forfeit.db", description="SQLite database file path (':memory:' for tests)")


class DatabaseConfig(BaseModel):
    """Subscription / preference store connection settings."""

    Engine: str = Field(default="postgres", description="Database engine (postgres, sqlite)")
    Echo: bool = Field(default=False, description="Log every SQL statement")

    Postgres: PostgresConfig = Field(
        default_factory=lambda: PostgresConfig(),
        description="PostgreSQL configuration",
    )

    SQLite: SQLiteConfig = Field(
        default_factory=lambda: SQLiteConfig(),
        description="SQLite configuration",
    )

    @property
    def url(self) -> str:
        if self.Engine == "sqlite":
            return f"sqlite+aiosqlite:///{self.SQLite.Path}"
        pg = self.Postgres
        return f"postgresql+asyncpg://{pg.User}:{pg.Password}@{pg.Host}:{pg.Port}/{pg.DBName}"
