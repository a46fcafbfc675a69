from functools import cached_property
from os.path import join

from pydantic import BaseModel, Field

from planner.persistence.istore import IStore


class SqliteModel(BaseModel, frozen=True):
    path: str = ".local"
    schema_version: int = Field(default=1, frozen=True)
    name: str = "planner"

    def full_path(self) -> str:
        """
        Get the path to the database file.

        The schema version is part of the file name, so an incompatible schema never reads an older file.
        """
        return join(self.path, f"{self.name}-v{self.schema_version}.sqlite")

    @cached_property
    def instance(self) -> IStore:
        from planner.persistence.sqlite import SqliteStore

        return SqliteStore(self)


class DatabaseModel(BaseModel):
    sqlite: SqliteModel = SqliteModel()  # Object is fully defined by default

    @cached_property
    def instance(self) -> IStore:
        return self.sqlite.instance
