"""Constants shared by the session, the log parser and the RCon wrapper"""

TEAM_FREE = 0
TEAM_RED = 1
TEAM_BLUE = 2
TEAM_SPEC = 3

# Team tokens as written by the game server (SurvivorWinner, team lists, ...)
TEAM_NAMES = {
    "free": TEAM_FREE,
    "f": TEAM_FREE,
    "red": TEAM_RED,
    "r": TEAM_RED,
    "blue": TEAM_BLUE,
    "b": TEAM_BLUE,
    "spectator": TEAM_SPEC,
    "spec": TEAM_SPEC,
    "s": TEAM_SPEC,
}

SCORING_TEAMS = (TEAM_RED, TEAM_BLUE)

GAMETYPES = {
    "0": "ffa",
    "1": "lms",
    "2": "dm",
    "3": "tdm",
    "4": "ts",
    "5": "ftl",
    "6": "cah",
    "7": "ctf",
    "8": "bm",
    "9": "jump",
    "10": "freeze",
    "11": "gungame",
}

# Flag log line action codes
FLAG_DROPPED = 0
FLAG_RETURNED = 1
FLAG_CAPTURED = 2

# Only bots carry this key in their userinfo
BOT_ONLY_USERINFO_KEY = "characterfile"

COMMAND_PREFIX = "!"

RECOVERY_COMMAND = "rconRecovery"
NEW_PASSWORD_MARKER = "rconPassword"

# Seconds
RECOVERY_TIMEOUT = 2
RCON_POLL_INTERVAL = 0.1
SHUTDOWN_GRACE_PERIOD = 10
TICK_INTERVAL = 0.05
FTP_TIMEOUT = 10

DEFAULT_FTP_PORT = 21
READ_CHUNK_SIZE = 1024

SERVER_NAME_PATTERN = r"[A-Za-z0-9_]+"
