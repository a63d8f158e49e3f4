import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

from sect_chronicle.lore import WorldAtlas
from sect_chronicle.routes import router
from sect_chronicle.session import GameSession

load_dotenv(Path(__file__).parent.parent / ".env")

DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"
DEFAULT_WORLD_FILE = Path(__file__).parent.parent / "presets" / "world.json"

logger = logging.getLogger(__name__)


def _load_atlas(world_file: Path) -> WorldAtlas | None:
    if not world_file.is_file():
        logger.warning("world file %s not found, running without location context", world_file)
        return None
    return WorldAtlas.load(world_file)


def create_app(data_dir: Path | None = None, world_file: Path | None = None) -> FastAPI:
    resolved = data_dir or Path(os.getenv("DATA_DIR", str(DEFAULT_DATA_DIR)))
    world = world_file or Path(os.getenv("WORLD_FILE", str(DEFAULT_WORLD_FILE)))

    app = FastAPI(title="Sect Chronicle")
    app.state.session = GameSession(resolved, atlas=_load_atlas(world))
    app.include_router(router, prefix="/api")
    return app
