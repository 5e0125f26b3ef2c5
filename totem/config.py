# Digital Totem Config
# Central configuration for the store, the sheet client and the tracker app

import os

# Remote sheet
TRIBE_URL = os.environ.get('TOTEM_TRIBE_URL')
HTTP_TIMEOUT = float(os.environ.get('TOTEM_HTTP_TIMEOUT', 10.0))
SYNC_WORKERS = int(os.environ.get('TOTEM_SYNC_WORKERS', 4))

# URLs containing this marker run fully offline with demo members
MOCK_MARKER = 'mock'

# Local storage
STORAGE_PATH = os.environ.get('TOTEM_STORAGE_PATH', os.path.join('data', 'tribe-storage.json'))
SCHEMA_VERSION = 1

# Logging
LOG_LEVEL = os.environ.get('TOTEM_LOG_LEVEL', 'INFO')
LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'

# Habits
HABIT_COUNT = 5
MAX_DAY_END_OFFSET = 8
DEFAULT_TIMEZONE = os.environ.get('TOTEM_DEFAULT_TIMEZONE')
STREAK_LOOKBACK_DAYS = 365

# Visit fund
PENALTY_PER_HABIT = 10
FUND_GOAL_AMOUNT = 8000
FUND_GOAL_NAME = 'Flight Ticket'

# Mood labels, indexed by habits completed today
MOOD_LABELS = ['Depressed', 'Hungry', 'Neutral', 'Happy', 'Winding Up', 'Radiant']

CONNECT_ERROR = 'Could not connect to Tribe. Check URL.'
