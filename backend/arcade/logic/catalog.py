"""Game catalog: the mini-games the arcade can run, loaded from YAML.

The catalog is the single table linking a game's stable slug to its numeric
remote id, so playlist resolution (id -> slug) and persistence rows
(slug -> id) cannot drift apart.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from arcade.logic.exceptions import CatalogError
from arcade.logic.scoring import ScoringRule  # noqa: TC001

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = structlog.get_logger()


def default_catalog_path() -> Path:
    """Return the packaged games.yaml next to the arcade package."""
    return Path(__file__).parent.parent / "config" / "games.yaml"


class GameConfig(BaseModel):
    """One catalog entry."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    slug: str = Field(min_length=1)
    game_id: int = Field(gt=0)
    name: str = Field(min_length=1)
    duration_seconds: float = Field(gt=0)
    instructions: str = ""
    scoring: ScoringRule
    time_bonus: bool = True


class GameCatalog:
    def __init__(self, games: Iterable[GameConfig]) -> None:
        self._by_slug: dict[str, GameConfig] = {}
        self._by_game_id: dict[int, GameConfig] = {}
        for game in games:
            if game.slug in self._by_slug:
                raise CatalogError(f"Duplicate game slug '{game.slug}'")
            if game.game_id in self._by_game_id:
                raise CatalogError(f"Duplicate game id {game.game_id} ('{game.slug}')")
            self._by_slug[game.slug] = game
            self._by_game_id[game.game_id] = game
        if not self._by_slug:
            raise CatalogError("Game catalog is empty")

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> GameCatalog:
        """Load and validate a catalog file. Raises CatalogError on any problem."""
        catalog_path = Path(path) if path is not None else default_catalog_path()
        try:
            with catalog_path.open(encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as exc:
            raise CatalogError(f"Failed to read game catalog {catalog_path}") from exc

        if not isinstance(data, dict) or not isinstance(data.get("games"), list):
            raise CatalogError(f"Expected a 'games' list in {catalog_path}")

        try:
            games = [GameConfig.model_validate(entry) for entry in data["games"]]
        except ValidationError as exc:
            raise CatalogError(f"Invalid game entry in {catalog_path}: {exc}") from exc

        catalog = cls(games)
        logger.info("game catalog loaded", path=str(catalog_path), games=len(games))
        return catalog

    def games(self) -> list[GameConfig]:
        """All games in catalog order."""
        return list(self._by_slug.values())

    def slugs(self) -> list[str]:
        return list(self._by_slug)

    def get(self, slug: str) -> GameConfig | None:
        return self._by_slug.get(slug)

    def by_game_id(self, game_id: int) -> GameConfig | None:
        return self._by_game_id.get(game_id)

    def game_id_for(self, slug: str) -> int:
        """Numeric remote id for a slug. Raises CatalogError for unknown slugs."""
        game = self._by_slug.get(slug)
        if game is None:
            raise CatalogError(f"Unknown game slug '{slug}'")
        return game.game_id

    def __len__(self) -> int:
        return len(self._by_slug)

    def __contains__(self, slug: object) -> bool:
        return slug in self._by_slug
