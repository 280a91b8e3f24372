#!/usr/bin/env python3
"""
╔══════════════════════════════════════════════════════════════════╗
║          SALIEN — TERRITORY CONTROL AGENT                        ║
║          Planet scanner for the Summer Saliens minigame          ║
║                                                                  ║
║  Pass order:                                                     ║
║    1. LEAVE    → Drop any active zone game (re-assert clan)      ║
║    2. SCAN     → Walk active planets, count playable zones       ║
║    3. SELECT   → First planet with a live boss zone wins         ║
║    4. JOIN     → Join the selected planet, confirm with server   ║
╚══════════════════════════════════════════════════════════════════╝
"""

import asyncio
import aiohttp
import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Optional
from enum import Enum

__version__ = "0.1.0"

# ═══════════════════════════════════════════════════════════════
#  CONFIGURATION  (edit here or use environment variables)
# ═══════════════════════════════════════════════════════════════

API_BASE          = os.getenv("SALIEN_API_BASE", "https://community.steam-api.com")
TOKEN             = os.getenv("SALIEN_TOKEN",    "YOUR_TOKEN_HERE")
CLAN_ID           = os.getenv("SALIEN_CLAN",     "")
LOG_LEVEL         = os.getenv("LOG_LEVEL",       "INFO")
MAX_RETRIES       = int(os.getenv("SALIEN_MAX_RETRIES", "2"))
RETRY_DELAY       = float(os.getenv("SALIEN_RETRY_DELAY", "5.0"))          # constant backoff, seconds
ZONE_FETCH_RETRIES = int(os.getenv("SALIEN_ZONE_FETCH_RETRIES", "5"))
PASS_INTERVAL     = float(os.getenv("SALIEN_PASS_INTERVAL", "110.0"))      # seconds between passes
MAX_RESTARTS      = int(os.getenv("SALIEN_MAX_RESTARTS", "10"))            # 0 = never give up

# ═══════════════════════════════════════════════════════════════
#  LOGGING
# ═══════════════════════════════════════════════════════════════

log = logging.getLogger("SalienBot")


def setup_logging(level: str = LOG_LEVEL):
    os.makedirs("logs", exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s  [%(levelname)-8s]  %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler("logs/bot.log"),
        ],
    )


# ═══════════════════════════════════════════════════════════════
#  CONSTANTS — upstream API contract
# ═══════════════════════════════════════════════════════════════

API_VERSION       = "v0001"
TERRITORY_SERVICE = "ITerritoryControlMinigameService"
MINIGAME_SERVICE  = "IMiniGameService"

# The API only answers requests that look like they came from the web client
DEFAULT_HEADERS = {
    "Accept":     "*/*",
    "Origin":     "https://steamcommunity.com",
    "Referer":    "https://steamcommunity.com/saliengame/play/",
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/67.0.3396.87 Safari/537.36"
    ),
}

REQUEST_TIMEOUT    = 15.0   # per attempt, seconds
ZONE_DONE_PROGRESS = 0.97   # zones past this are as good as captured
PLANET_NAME_PREFIX = "#TerritoryControl_"


class SelectionState(Enum):
    IDLE      = "idle"
    SCANNING  = "scanning"
    SELECTED  = "selected"
    EXHAUSTED = "exhausted"


class ZoneDifficulty(Enum):
    UNKNOWN = 0
    EASY    = 1
    MEDIUM  = 2
    HARD    = 3

    @classmethod
    def from_wire(cls, value) -> "ZoneDifficulty":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class ZoneType(Enum):
    OTHER  = 0
    NORMAL = 3
    BOSS   = 4

    @classmethod
    def from_wire(cls, value) -> "ZoneType":
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER


# ═══════════════════════════════════════════════════════════════
#  ERRORS
# ═══════════════════════════════════════════════════════════════

class ErrorKind(Enum):
    OPERATION = "operation"   # terminal for the current pass
    RESTART   = "restart"     # deliberate restart of the whole pass


class SalienError(Exception):
    kind: ErrorKind = ErrorKind.OPERATION


class OperationError(SalienError):
    kind = ErrorKind.OPERATION

    def __init__(self, message: str, method: Optional[str] = None, attempts: int = 0):
        super().__init__(message)
        self.method   = method
        self.attempts = attempts


class RestartSignal(SalienError):
    kind = ErrorKind.RESTART


# ═══════════════════════════════════════════════════════════════
#  DATA MODELS
# ═══════════════════════════════════════════════════════════════

def _as_float(value, default: float = 0.0) -> float:
    try:
        return float(value) if value is not None else default
    except (TypeError, ValueError):
        return default


def _as_int(value, default: int = 0) -> int:
    try:
        return int(value) if value is not None else default
    except (TypeError, ValueError):
        return default


@dataclass
class Zone:
    difficulty:       ZoneDifficulty = ZoneDifficulty.UNKNOWN
    type:             ZoneType       = ZoneType.OTHER
    raw_type:         Optional[int]  = None
    capture_progress: float          = 0.0
    captured:         bool           = False

    @property
    def eligible(self) -> bool:
        return not self.captured and self.capture_progress <= ZONE_DONE_PROGRESS

    @classmethod
    def from_wire(cls, raw: dict) -> "Zone":
        return cls(
            difficulty       = ZoneDifficulty.from_wire(raw.get("difficulty")),
            type             = ZoneType.from_wire(raw.get("type")),
            raw_type         = raw.get("type"),
            capture_progress = _as_float(raw.get("capture_progress")),
            captured         = bool(raw.get("captured", False)),
        )


@dataclass
class Planet:
    id:               str
    name:             str   = ""
    capture_progress: float = 0.0
    current_players:  int   = 0
    zones:            list  = field(default_factory=list)  # list[Zone]

    @property
    def display_name(self) -> str:
        return self.name.replace(PLANET_NAME_PREFIX, "").replace("_", " ")

    @classmethod
    def from_wire(cls, raw: dict) -> "Planet":
        state = raw.get("state")
        if not isinstance(state, dict):
            state = {}
        zones = raw.get("zones")
        if not isinstance(zones, list):
            zones = []
        return cls(
            id               = str(raw.get("id", "")),
            name             = str(state.get("name") or ""),
            capture_progress = _as_float(state.get("capture_progress")),
            current_players  = _as_int(state.get("current_players")),
            zones            = [Zone.from_wire(z) for z in zones if isinstance(z, dict)],
        )


@dataclass
class PlanetSummary:
    hard:           int  = 0
    medium:         int  = 0
    easy:           int  = 0
    unknown:        int  = 0
    has_boss_zone:  bool = False
    anomalous_types: list = field(default_factory=list)

    @property
    def eligible_zones(self) -> int:
        return self.hard + self.medium + self.easy + self.unknown


@dataclass
class SelectionResult:
    planet_id:     Optional[str] = None
    known_planets: list          = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.planet_id is not None


def summarize_zones(zones: list) -> PlanetSummary:
    """Bucket the eligible zones of one planet by difficulty and spot bosses.

    Captured zones and zones past ZONE_DONE_PROGRESS are ignored entirely,
    so a planet with nothing left to play reports all-zero counts.
    """
    summary = PlanetSummary()
    for zone in zones:
        if not zone.eligible:
            continue

        if zone.type is ZoneType.BOSS:
            summary.has_boss_zone = True
        elif zone.type is not ZoneType.NORMAL:
            summary.anomalous_types.append(zone.raw_type)

        if zone.difficulty is ZoneDifficulty.HARD:
            summary.hard += 1
        elif zone.difficulty is ZoneDifficulty.MEDIUM:
            summary.medium += 1
        elif zone.difficulty is ZoneDifficulty.EASY:
            summary.easy += 1
        else:
            summary.unknown += 1

    return summary


# ═══════════════════════════════════════════════════════════════
#  API CLIENT — async HTTP wrapper
# ═══════════════════════════════════════════════════════════════

class SalienClient:
    """
    Async HTTP client for the territory control minigame API.
    Every call is retried a bounded number of times with a constant delay;
    the decoded `response` envelope is returned as-is, so callers must cope
    with empty or error-shaped payloads.
    """

    def __init__(self, session: aiohttp.ClientSession, token: str = TOKEN,
                 base: str = API_BASE, max_retries: int = MAX_RETRIES,
                 retry_delay: float = RETRY_DELAY):
        self.session     = session
        self.token       = token
        self.base        = base.rstrip("/")
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    def build_url(self, method: str, params: Optional[list] = None) -> str:
        url = f"{self.base}/{method}/{API_VERSION}"
        if params:
            url += "/?" + "&".join(params)
        return url

    async def request(self, method: str, params: Optional[list], max_retries: int,
                      http_method: str = "GET", headers: Optional[dict] = None):
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")

        url     = self.build_url(method, params)
        hdrs    = {**DEFAULT_HEADERS, **(headers or {})}
        timeout = aiohttp.ClientTimeout(total=REQUEST_TIMEOUT)
        attempts = 0

        while True:
            try:
                log.info(f"[API] Sending {method}...")
                async with self.session.request(
                    http_method, url, headers=hdrs, timeout=timeout
                ) as r:
                    body = await r.json(content_type=None)
                break
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                attempts += 1
                log.error(f"[API] {type(e).__name__}: for {method}")
                log.debug(f"[API] {method} failure detail: {e!r}")

                if attempts >= max_retries:
                    raise OperationError(
                        f"Failed {method} after {attempts} attempts",
                        method=method, attempts=attempts,
                    ) from e

                log.warning(f"[API] Retrying {method} in {self.retry_delay:g} seconds...")
                await asyncio.sleep(self.retry_delay)

        if isinstance(body, dict):
            return body.get("response")
        return None

    # Territory control
    async def get_planets(self) -> Optional[list]:
        data = await self.request(
            f"{TERRITORY_SERVICE}/GetPlanets", ["active_only=1"], self.max_retries,
        )
        planets = data.get("planets") if isinstance(data, dict) else None
        return planets if isinstance(planets, list) else None

    async def get_planet(self, planet_id: str) -> Optional[dict]:
        data = await self.request(
            f"{TERRITORY_SERVICE}/GetPlanet",
            [f"id={planet_id}", "language=english"],
            self.max_retries,
        )
        planets = data.get("planets") if isinstance(data, dict) else None
        if isinstance(planets, list) and planets and isinstance(planets[0], dict):
            return planets[0]
        return None

    async def get_player_info(self) -> Optional[dict]:
        return await self.request(
            f"{TERRITORY_SERVICE}/GetPlayerInfo",
            [f"access_token={self.token}"],
            self.max_retries, http_method="POST",
        )

    async def represent_clan(self, clan_id: str) -> Optional[dict]:
        return await self.request(
            f"{TERRITORY_SERVICE}/RepresentClan",
            [f"access_token={self.token}", f"clanid={clan_id}"],
            self.max_retries, http_method="POST",
        )

    async def join_planet(self, planet_id: str) -> Optional[dict]:
        return await self.request(
            f"{TERRITORY_SERVICE}/JoinPlanet",
            [f"access_token={self.token}", f"id={planet_id}"],
            self.max_retries, http_method="POST",
        )

    # Minigame sessions
    async def leave_game(self, game_id: str) -> Optional[dict]:
        return await self.request(
            f"{MINIGAME_SERVICE}/LeaveGame",
            [f"access_token={self.token}", f"gameid={game_id}"],
            self.max_retries, http_method="POST",
        )

    async def leave_current_game(self, clan: Optional[str] = None) -> dict:
        """Leave any active zone game so a new planet can be joined."""
        player_info = await self.get_player_info()
        if not isinstance(player_info, dict):
            player_info = {}

        if clan:
            await self.represent_clan(clan)

        game_id = player_info.get("active_zone_game")
        if game_id:
            log.info(f"[API] Leaving {game_id}...")
            try:
                await self.leave_game(game_id)
            except OperationError as e:
                raise OperationError(f"Could not leave game {game_id}: {e}") from e
            log.info("[API] Success!")

        return player_info


# ═══════════════════════════════════════════════════════════════
#  PLANET SELECTOR — one scan over every active planet
# ═══════════════════════════════════════════════════════════════

class PlanetSelector:
    """
    Picks the planet to play for one pass.

    Planets are walked strictly in API order, one request at a time. The
    first planet holding an eligible boss zone is selected and the scan stops
    there; if none has one the pass ends EXHAUSTED with no planet.
    """

    def __init__(self, client: SalienClient, zone_fetch_retries: int = ZONE_FETCH_RETRIES):
        self.client             = client
        self.zone_fetch_retries = zone_fetch_retries
        self.state:         SelectionState = SelectionState.IDLE
        self.known_planets: list           = []
        self.planet_id:     Optional[str]  = None

    async def select(self) -> SelectionResult:
        self.state         = SelectionState.IDLE
        self.known_planets = []
        self.planet_id     = None

        planets = await self.client.get_planets()
        if not planets:
            raise OperationError("Didn't find any planets.")

        self.state = SelectionState.SCANNING
        for raw in planets:
            if not isinstance(raw, dict):
                log.debug(f"[PLANET] Skipping malformed planet entry: {raw!r}")
                continue
            planet = Planet.from_wire(raw)
            self.known_planets.append(planet.id)

            zones   = await self._fetch_zones(planet.id)
            summary = summarize_zones(zones)
            self._log_planet(planet, summary)

            if summary.has_boss_zone:
                log.info("[PLANET] >> This planet has a boss zone, selecting this planet")
                self.planet_id = planet.id
                self.state     = SelectionState.SELECTED
                break
        else:
            log.warning("[PLANET] No planet with a boss zone this pass")
            self.state = SelectionState.EXHAUSTED

        return SelectionResult(planet_id=self.planet_id, known_planets=list(self.known_planets))

    async def _fetch_zones(self, planet_id: str) -> list:
        # GetPlanet sometimes answers with an empty zone list; ask again
        for _ in range(self.zone_fetch_retries):
            detail = await self.client.get_planet(planet_id)
            if detail and detail.get("zones"):
                return Planet.from_wire(detail).zones
            log.debug(f"[PLANET] Empty zone list for {planet_id}, fetching again")

        raise OperationError(
            f"Planet {planet_id} returned no zones after {self.zone_fetch_retries} attempts",
            method=f"{TERRITORY_SERVICE}/GetPlanet", attempts=self.zone_fetch_retries,
        )

    @staticmethod
    def _log_planet(planet: Planet, summary: PlanetSummary):
        log.info(
            f"[PLANET] >> Planet: {planet.id} - Hard: {summary.hard} - "
            f"Medium: {summary.medium} - Easy: {summary.easy} - "
            f"Captured: {planet.capture_progress * 100:.2f}% - "
            f"Players: {planet.current_players} ({planet.display_name})"
        )
        if not summary.eligible_zones:
            log.info(f"[PLANET] >> No playable zones left on {planet.id}")
        elif summary.unknown:
            log.info(f"[PLANET] >> Unknown zones found: {summary.unknown}")
        for zone_type in summary.anomalous_types:
            log.warning(f"[PLANET] !! Unknown zone type: {zone_type}")


# ═══════════════════════════════════════════════════════════════
#  MAIN BOT
# ═══════════════════════════════════════════════════════════════

class SalienBot:

    def __init__(self, token: str = TOKEN, clan: Optional[str] = CLAN_ID or None,
                 max_restarts: int = MAX_RESTARTS, pass_interval: float = PASS_INTERVAL,
                 retry_delay: float = RETRY_DELAY):
        self.token         = token
        self.clan          = clan
        self.max_restarts  = max_restarts
        self.pass_interval = pass_interval
        self.retry_delay   = retry_delay
        self.client:  Optional[SalienClient]          = None
        self.session: Optional[aiohttp.ClientSession] = None

        self.err_streak:   int = 0
        self.stat_passes   = 0
        self.stat_joins    = 0
        self.last_planet:  Optional[str] = None

    # ── Startup ───────────────────────────────────────────────

    async def start(self):
        log.info("=" * 60)
        log.info(f"  🪐  SALIEN BOT  |  Version: {__version__}")
        log.info(f"  🌐  API: {API_BASE}")
        if self.clan:
            log.info(f"  🛡  Clan: {self.clan}")
        log.info("=" * 60)

        connector    = aiohttp.TCPConnector(limit=10, enable_cleanup_closed=True)
        self.session = aiohttp.ClientSession(connector=connector)
        self.client  = SalienClient(self.session, self.token, retry_delay=self.retry_delay)

        try:
            await self._run()
        except (KeyboardInterrupt, asyncio.CancelledError):
            log.info("[BOT] Shutdown signal received.")
        finally:
            log.info("[BOT] Cleaning up...")
            if self.session and not self.session.closed:
                await self.session.close()
            self._print_summary()

    # ── Main loop ─────────────────────────────────────────────

    async def _run(self):
        while True:
            try:
                joined = await self.run_pass()
                self.err_streak = 0
                await asyncio.sleep(self.pass_interval if joined else self.retry_delay)

            except (KeyboardInterrupt, asyncio.CancelledError):
                raise

            except RestartSignal as e:
                log.warning(f"[BOT] Restart requested: {e}")
                log.info(f"[BOT] Script will restart in {self.retry_delay:g} seconds...")
                await asyncio.sleep(self.retry_delay)

            except Exception as e:
                self.err_streak += 1
                log.error(
                    f"[BOT] {type(e).__name__} #{self.err_streak}: {e}",
                    exc_info=not isinstance(e, OperationError),
                )
                if self.max_restarts and self.err_streak >= self.max_restarts:
                    log.critical(f"[BOT] Giving up after {self.err_streak} failed passes")
                    raise
                log.info(f"[BOT] Script will restart in {self.retry_delay:g} seconds...")
                await asyncio.sleep(self.retry_delay)

    async def run_pass(self) -> bool:
        """One selection pass; returns True once a planet has been joined."""
        self.stat_passes += 1
        await self.client.leave_current_game(self.clan)

        result = await PlanetSelector(self.client).select()
        log.info(f"[BOT] Scanned planets: {', '.join(result.known_planets)}")
        if not result.found:
            return False

        await self.client.join_planet(result.planet_id)
        info = await self.client.get_player_info()
        active = info.get("active_planet") if isinstance(info, dict) else None
        if active is not None and str(active) != result.planet_id:
            log.warning(f"[BOT] Joined {result.planet_id} but server reports {active}")
        else:
            log.info(f"[BOT] ✅ Joined planet {result.planet_id}")

        self.stat_joins  += 1
        self.last_planet  = result.planet_id
        return True

    def _print_summary(self):
        log.info("=" * 60)
        log.info("  📊  SESSION SUMMARY")
        log.info(f"  Passes run     : {self.stat_passes}")
        log.info(f"  Planets joined : {self.stat_joins}")
        log.info(f"  Last planet    : {self.last_planet or '-'}")
        log.info("=" * 60)


# ═══════════════════════════════════════════════════════════════
#  ENTRY POINT
# ═══════════════════════════════════════════════════════════════

def main():
    setup_logging()
    if TOKEN == "YOUR_TOKEN_HERE":
        log.warning("⚠  Token not set! Use: export SALIEN_TOKEN=your_token")
        log.warning("   Then run: salien-bot")

    try:
        asyncio.run(SalienBot().start())
    except KeyboardInterrupt:
        log.info("[BOT] 👋 Stopped. Goodbye!")
    except Exception as e:
        log.critical(f"[BOT] Crashed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
