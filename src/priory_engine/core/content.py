from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional, TypeVar

from .errors import ContentError
from .normalize import field_key

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ScriptKind(str, Enum):
    TASK = "task"
    SHOP = "shop"
    MINIGAME = "minigame"
    CHANCE = "chance"
    REBUILD = "rebuild"
    NAMED = "named"


_SCRIPT_PREFIXES = (
    ScriptKind.TASK,
    ScriptKind.SHOP,
    ScriptKind.MINIGAME,
    ScriptKind.CHANCE,
    ScriptKind.REBUILD,
)


@dataclass(frozen=True)
class Script:
    kind: ScriptKind
    arg: str

    @property
    def advances_time_on_menu(self) -> bool:
        return self.kind is not ScriptKind.TASK


def decode_script(raw: str | None) -> Script | None:
    text = (raw or "").strip()
    if not text:
        return None
    for kind in _SCRIPT_PREFIXES:
        prefix = kind.value + ":"
        if text.startswith(prefix):
            return Script(kind, text[len(prefix):])
    return Script(ScriptKind.NAMED, text)


class ActionKind(str, Enum):
    MENU = "menu"
    TIMED = "timed"
    SCENE = "scene"
    SCRIPT = "script"
    TEXT = "text"


@dataclass(frozen=True)
class ActionTarget:
    kind: ActionKind
    value: str
    script: Optional[Script] = None


def decode_action(raw: str) -> ActionTarget:
    text = str(raw or "")
    for kind in (ActionKind.MENU, ActionKind.TIMED, ActionKind.SCENE):
        prefix = kind.value + ":"
        if text.startswith(prefix):
            return ActionTarget(kind, text[len(prefix):])
    if text.startswith("script:"):
        body = text[len("script:"):]
        return ActionTarget(ActionKind.SCRIPT, body, decode_script(body))
    return ActionTarget(ActionKind.TEXT, text)


@dataclass(frozen=True)
class OptionDef:
    text: str
    response: Optional[str] = None
    next_scene: Optional[str] = None
    next_menu: Optional[str] = None
    next_timed: Optional[str] = None
    virtue_delta: Mapping[str, int] = field(default_factory=dict)
    priory_delta: Mapping[str, int] = field(default_factory=dict)
    counter_delta: Mapping[str, int] = field(default_factory=dict)
    set_flags: tuple[str, ...] = ()
    clear_flags: tuple[str, ...] = ()
    require_flags: tuple[str, ...] = ()
    require_not_flags: tuple[str, ...] = ()
    require_sexes: tuple[str, ...] = ()
    require_not_sexes: tuple[str, ...] = ()
    coin_delta: int = 0
    add_items: tuple[str, ...] = ()
    remove_items: tuple[str, ...] = ()
    script: Optional[Script] = None
    start_quest: Optional[str] = None
    complete_quest: Optional[str] = None


@dataclass(frozen=True)
class SceneDef:
    id: str
    text: str
    exits: Mapping[str, str] = field(default_factory=dict)
    actions: Mapping[str, ActionTarget] = field(default_factory=dict)
    enter_menu: Optional[str] = None
    enter_timed: Optional[str] = None
    end_chapter: bool = False


@dataclass(frozen=True)
class MenuDef:
    id: str
    prompt: str
    options: tuple[OptionDef, ...] = ()


@dataclass(frozen=True)
class TimedDef:
    id: str
    prompt: str
    seconds: int
    default_index: int = 0
    options: tuple[OptionDef, ...] = ()


@dataclass(frozen=True)
class LifePathDef:
    id: str
    name: str
    description: str = ""
    virtue_delta: Mapping[str, int] = field(default_factory=dict)
    coin_min: int = 0
    coin_max: int = 0
    starter_items: tuple[str, ...] = ()
    intro_menu: Optional[str] = None


@dataclass(frozen=True)
class QuestDef:
    id: str
    title: str
    description: str = ""
    category: Optional[str] = None
    min_party_size: int = 1
    requires_synchronized_party: bool = False


@dataclass(frozen=True)
class ItemDef:
    id: str
    name: str
    description: str = ""
    value: int = 0


@dataclass(frozen=True)
class ShopStock:
    item_id: str
    price: int


@dataclass(frozen=True)
class ShopDef:
    id: str
    name: str
    description: str = ""
    stock: tuple[ShopStock, ...] = ()


@dataclass(frozen=True)
class RebuildLevelDef:
    level: int
    name: str
    cost: Mapping[str, int] = field(default_factory=dict)
    time_days: int = 0
    labor_per_day: int = 3
    stat_delta: Mapping[str, int] = field(default_factory=dict)
    unlocks: tuple[str, ...] = ()


@dataclass(frozen=True)
class RebuildNodeDef:
    node_id: str
    name: str
    levels: tuple[RebuildLevelDef, ...] = ()
    min_stats: Mapping[str, int] = field(default_factory=dict)
    requires_node_levels: Mapping[str, int] = field(default_factory=dict)

    def level(self, number: int) -> RebuildLevelDef | None:
        for level in sorted(self.levels, key=lambda lvl: lvl.level):
            if level.level == number:
                return level
        return None


@dataclass
class ContentModel:
    scenes: dict[str, SceneDef] = field(default_factory=dict)
    menus: dict[str, MenuDef] = field(default_factory=dict)
    timed: dict[str, TimedDef] = field(default_factory=dict)
    life_paths: dict[str, LifePathDef] = field(default_factory=dict)
    quests: dict[str, QuestDef] = field(default_factory=dict)
    items: dict[str, ItemDef] = field(default_factory=dict)
    shops: dict[str, ShopDef] = field(default_factory=dict)
    rebuild_nodes: dict[str, RebuildNodeDef] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


class _Fields:
    """Case- and underscore-insensitive view over one raw content record."""

    def __init__(self, raw: Any, where: str):
        if not isinstance(raw, Mapping):
            raise ContentError(f"{where}: expected an object, got {type(raw).__name__}")
        self._where = where
        self._data = {field_key(str(k)): v for k, v in raw.items()}

    def get(self, name: str, default: Any = None) -> Any:
        value = self._data.get(field_key(name))
        return default if value is None else value

    def text(self, name: str, default: str = "") -> str:
        return str(self.get(name, default))

    def optional_text(self, name: str) -> str | None:
        value = self.get(name)
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    def integer(self, name: str, default: int = 0) -> int:
        value = self.get(name, default)
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ContentError(f"{self._where}: field '{name}' must be an integer") from exc

    def flag(self, name: str) -> bool:
        return bool(self.get(name, False))

    def strings(self, name: str) -> tuple[str, ...]:
        value = self.get(name, ())
        if isinstance(value, str):
            return (value,)
        return tuple(str(v) for v in value)

    def int_map(self, name: str) -> dict[str, int]:
        value = self.get(name, {})
        if not isinstance(value, Mapping):
            raise ContentError(f"{self._where}: field '{name}' must be an object")
        try:
            return {str(k): int(v) for k, v in value.items()}
        except (TypeError, ValueError) as exc:
            raise ContentError(f"{self._where}: field '{name}' must map to integers") from exc

    def str_map(self, name: str) -> dict[str, str]:
        value = self.get(name, {})
        if not isinstance(value, Mapping):
            raise ContentError(f"{self._where}: field '{name}' must be an object")
        return {str(k): str(v) for k, v in value.items()}


def _decode_option(raw: Any, where: str) -> OptionDef:
    f = _Fields(raw, where)
    return OptionDef(
        text=f.text("text"),
        response=f.optional_text("response"),
        next_scene=f.optional_text("next_scene"),
        next_menu=f.optional_text("next_menu"),
        next_timed=f.optional_text("next_timed"),
        virtue_delta=f.int_map("virtue_delta"),
        priory_delta=f.int_map("priory_delta"),
        counter_delta=f.int_map("counter_delta"),
        set_flags=f.strings("set_flags"),
        clear_flags=f.strings("clear_flags"),
        require_flags=f.strings("require_flags"),
        require_not_flags=f.strings("require_not_flags"),
        require_sexes=f.strings("require_sexes"),
        require_not_sexes=f.strings("require_not_sexes"),
        coin_delta=f.integer("coin_delta"),
        add_items=f.strings("add_items"),
        remove_items=f.strings("remove_items"),
        script=decode_script(f.optional_text("script")),
        start_quest=f.optional_text("start_quest"),
        complete_quest=f.optional_text("complete_quest"),
    )


def _decode_options(f: _Fields, where: str) -> tuple[OptionDef, ...]:
    return tuple(
        _decode_option(raw, f"{where}.options[{i}]")
        for i, raw in enumerate(f.get("options", ()))
    )


def _decode_scene(f: _Fields, entry_id: str) -> SceneDef:
    return SceneDef(
        id=entry_id,
        text=f.text("text"),
        exits=f.str_map("exits"),
        actions={key: decode_action(value) for key, value in f.str_map("actions").items()},
        enter_menu=f.optional_text("enter_menu"),
        enter_timed=f.optional_text("enter_timed"),
        end_chapter=f.flag("end_chapter"),
    )


def _decode_menu(f: _Fields, entry_id: str) -> MenuDef:
    return MenuDef(id=entry_id, prompt=f.text("prompt"), options=_decode_options(f, f"menu {entry_id}"))


def _decode_timed(f: _Fields, entry_id: str) -> TimedDef:
    return TimedDef(
        id=entry_id,
        prompt=f.text("prompt"),
        seconds=f.integer("seconds"),
        default_index=f.integer("default_index"),
        options=_decode_options(f, f"timed {entry_id}"),
    )


def _decode_life_path(f: _Fields, entry_id: str) -> LifePathDef:
    coin_min = f.integer("coin_min")
    coin_max = f.integer("coin_max", coin_min)
    if coin_max < coin_min:
        raise ContentError(f"life path {entry_id}: coin_max is below coin_min")
    return LifePathDef(
        id=entry_id,
        name=f.text("name", entry_id),
        description=f.text("description"),
        virtue_delta=f.int_map("virtue_delta"),
        coin_min=coin_min,
        coin_max=coin_max,
        starter_items=f.strings("starter_items"),
        intro_menu=f.optional_text("intro_menu"),
    )


def _decode_quest(f: _Fields, entry_id: str) -> QuestDef:
    return QuestDef(
        id=entry_id,
        title=f.text("title", entry_id),
        description=f.text("description"),
        category=f.optional_text("category"),
        min_party_size=f.integer("min_party_size", 1),
        requires_synchronized_party=f.flag("requires_synchronized_party"),
    )


def _decode_item(f: _Fields, entry_id: str) -> ItemDef:
    return ItemDef(
        id=entry_id,
        name=f.text("name", entry_id),
        description=f.text("description"),
        value=f.integer("value"),
    )


def _decode_shop(f: _Fields, entry_id: str) -> ShopDef:
    stock = []
    for i, raw in enumerate(f.get("stock", ())):
        s = _Fields(raw, f"shop {entry_id}.stock[{i}]")
        stock.append(ShopStock(item_id=s.text("item_id"), price=s.integer("price")))
    return ShopDef(
        id=entry_id,
        name=f.text("name", entry_id),
        description=f.text("description"),
        stock=tuple(stock),
    )


def _decode_rebuild_node(f: _Fields, entry_id: str) -> RebuildNodeDef:
    levels = []
    for i, raw in enumerate(f.get("levels", ())):
        lv = _Fields(raw, f"rebuild node {entry_id}.levels[{i}]")
        levels.append(
            RebuildLevelDef(
                level=lv.integer("level"),
                name=lv.text("name"),
                cost=lv.int_map("cost"),
                time_days=lv.integer("time_days"),
                labor_per_day=lv.integer("labor_per_day", 3),
                stat_delta=lv.int_map("stat_delta"),
                unlocks=lv.strings("unlocks"),
            )
        )
    return RebuildNodeDef(
        node_id=entry_id,
        name=f.text("name", entry_id),
        levels=tuple(levels),
        min_stats=f.int_map("min_stats"),
        requires_node_levels=f.int_map("requires_node_levels"),
    )


def _decode_collection(
    raw: Any,
    section: str,
    decode: Callable[[_Fields, str], T],
    id_field: str = "id",
) -> dict[str, T]:
    """Decode a list of records or an id-keyed mapping of records."""
    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        entries: Iterable[tuple[str | None, Any]] = raw.items()
    elif isinstance(raw, (list, tuple)):
        entries = ((None, item) for item in raw)
    else:
        raise ContentError(f"{section}: expected a list or object")

    out: dict[str, T] = {}
    for key, item in entries:
        f = _Fields(item, section if key is None else f"{section}.{key}")
        entry_id = f.optional_text(id_field) or key
        if not entry_id:
            raise ContentError(f"{section}: entry without '{id_field}'")
        out[str(entry_id)] = decode(f, str(entry_id))
    return out


def load_content(data: Mapping[str, Any]) -> ContentModel:
    f = _Fields(data, "content")
    return ContentModel(
        scenes=_decode_collection(f.get("scenes"), "scenes", _decode_scene),
        menus=_decode_collection(f.get("menus"), "menus", _decode_menu),
        timed=_decode_collection(f.get("timed"), "timed", _decode_timed),
        life_paths=_decode_collection(f.get("life_paths"), "life_paths", _decode_life_path),
        quests=_decode_collection(f.get("quests"), "quests", _decode_quest),
        items=_decode_collection(f.get("items"), "items", _decode_item),
        shops=_decode_collection(f.get("shops"), "shops", _decode_shop),
        rebuild_nodes=_decode_collection(f.get("rebuild_nodes"), "rebuild_nodes", _decode_rebuild_node, "node_id"),
    )


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except ValueError as exc:
        raise ContentError(f"{path}: invalid JSON ({exc})") from exc


def load_content_dir(root: str | Path) -> ContentModel:
    """Load content from the on-disk layout used by the authored data."""
    root = Path(root)
    data: dict[str, Any] = {}

    scenes_dir = root / "scenes"
    if scenes_dir.is_dir():
        data["scenes"] = [_read_json(path) for path in sorted(scenes_dir.glob("*.json"))]

    optional_files = {
        "menus": root / "dialogue" / "menus.json",
        "timed": root / "dialogue" / "timed.json",
        "life_paths": root / "lifepaths.json",
        "quests": root / "quests.json",
        "items": root / "items.json",
        "shops": root / "shops.json",
        "rebuild_nodes": root / "rebuild_nodes.json",
    }
    for section, path in optional_files.items():
        if path.is_file():
            data[section] = _read_json(path)

    content = load_content(data)
    logger.info(
        "Loaded content from %s: %d scenes, %d menus, %d timed prompts",
        root,
        len(content.scenes),
        len(content.menus),
        len(content.timed),
    )
    return content
