"""Shared fixtures: a throwaway SQLite record store seeded with reference data."""

import pytest
import pytest_asyncio

from config.database import get_test_config
from config.settings import Settings
from database.connection import DatabaseConnectionManager
from database.models import Club, League, Team
from database.store import RecordStore
from migration.context import MigrationContext

MAPPING = {
    "1. Mannschaft": "SV Viktoria Wertheim",
    "2. Mannschaft": "SV Viktoria Wertheim II",
}

KREISLIGA_A = 1
KREISLIGA_B = 2

# Clubs
VIKTORIA = 1
VIKTORIA_II = 2
KREUZWERTHEIM = 3
HUNDHEIM = 4
DORFPROZELTEN = 5  # inactive

# Teams
TEAM_ERSTE = 1          # mapped to VIKTORIA
TEAM_KREUZWERTHEIM = 2  # resolved by name
TEAM_HUNDHEIM = 3       # resolved by name
TEAM_ZWEITE = 4         # mapped to VIKTORIA_II, which only plays in Kreisliga B
TEAM_UNBEKANNT = 5      # no rule, no club
TEAM_VIKTORIA = 6       # resolved by name to VIKTORIA
TEAM_DORFPROZELTEN = 7  # resolved by name to an inactive club
MISSING_TEAM = 99


@pytest_asyncio.fixture
async def db(tmp_path):
    manager = DatabaseConnectionManager(
        get_test_config(f"sqlite+aiosqlite:///{tmp_path / 'migration.db'}")
    )
    await manager.initialize()
    await manager.create_tables()
    await _seed(manager)
    yield manager
    await manager.close()


async def _seed(manager: DatabaseConnectionManager):
    async with manager.get_session() as session:
        league_a = League(id=KREISLIGA_A, name="Kreisliga A Tauberbischofsheim")
        league_b = League(id=KREISLIGA_B, name="Kreisliga B Tauberbischofsheim")
        session.add_all([league_a, league_b])
        session.add_all([
            Club(id=VIKTORIA, name="SV Viktoria Wertheim", active=True, leagues=[league_a]),
            Club(id=VIKTORIA_II, name="SV Viktoria Wertheim II", active=True, leagues=[league_b]),
            Club(id=KREUZWERTHEIM, name="TSV Kreuzwertheim", active=True, leagues=[league_a]),
            Club(id=HUNDHEIM, name="FC Hundheim", active=True, leagues=[league_a]),
            Club(id=DORFPROZELTEN, name="SV Dorfprozelten", active=False, leagues=[league_a]),
        ])
        session.add_all([
            Team(id=TEAM_ERSTE, name="1. Mannschaft", league_id=KREISLIGA_A),
            Team(id=TEAM_KREUZWERTHEIM, name="TSV Kreuzwertheim", league_id=KREISLIGA_A),
            Team(id=TEAM_HUNDHEIM, name="FC Hundheim", league_id=KREISLIGA_A),
            Team(id=TEAM_ZWEITE, name="2. Mannschaft", league_id=KREISLIGA_A),
            Team(id=TEAM_UNBEKANNT, name="Unbekannt", league_id=KREISLIGA_A),
            Team(id=TEAM_VIKTORIA, name="SV Viktoria Wertheim", league_id=KREISLIGA_A),
            Team(id=TEAM_DORFPROZELTEN, name="SV Dorfprozelten", league_id=KREISLIGA_A),
        ])


@pytest.fixture
def store(db):
    return RecordStore(db)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'migration.db'}",
        backup_dir=str(tmp_path / "backups"),
        team_club_mapping=dict(MAPPING),
        mapping_file=None,
        mapping_name_fallback=True,
        migration_batch_size=4,
        migration_max_concurrent=1,
        retry_max_attempts=3,
        retry_base_delay=0.0,
        retry_max_delay=0.0,
        stale_run_timeout_minutes=60,
        log_file=None,
    )


@pytest.fixture
def context(settings, store):
    return MigrationContext.from_settings(settings, store=store)


@pytest.fixture
def make_match(store):
    async def _make(home_team_id=None, away_team_id=None, home_club_id=None, away_club_id=None,
                    league_id=KREISLIGA_A, **values):
        return await store.matches.create({
            "league_id": league_id,
            "season_id": 2024,
            "home_team_id": home_team_id,
            "away_team_id": away_team_id,
            "home_club_id": home_club_id,
            "away_club_id": away_club_id,
            **values,
        })
    return _make


@pytest.fixture
def make_entry(store):
    async def _make(display_name, team_id=None, club_id=None, league_id=KREISLIGA_A, **values):
        return await store.standings.create({
            "league_id": league_id,
            "display_name": display_name,
            "team_id": team_id,
            "club_id": club_id,
            **values,
        })
    return _make
