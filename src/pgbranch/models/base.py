"""Base models for pgbranch."""

from pydantic import BaseModel, ConfigDict


class PgBranchStateModel(BaseModel):
    """Base model for entities persisted in the local state file.

    Unknown fields are ignored so state written by a newer version can
    still be read.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        use_enum_values=True,
        extra="ignore",
    )
