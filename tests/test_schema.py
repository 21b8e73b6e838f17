from __future__ import annotations

from pydantic import BaseModel, Field

from codial_mcp.app.schema import PydanticSchema


class _SearchParams(BaseModel):
    query: str
    limit: int = Field(default=10, ge=1)


def test_pydantic_schema_validates_and_describes() -> None:
    schema = PydanticSchema(_SearchParams)

    ok = schema.validate({"query": "mcp", "limit": "5"})
    bad = schema.validate({"limit": 0})

    assert ok.success and ok.data == _SearchParams(query="mcp", limit=5)
    assert not bad.success and bad.data is None
    assert {tuple(error["loc"]) for error in bad.errors} == {("query",), ("limit",)}
    assert schema.describe()["required"] == ["query"]
