# Copy this file to config.py and adjust the values.
# Every option can also be set through an environment variable of the same name.

# Song catalog CSV (filename,title,generation,type,game,character,stage,fileHash)
CATALOG_PATH = 'songs.csv'

# Directory that holds the audio files referenced by the catalog
MUSIC_DIR = 'music'

# 'hash-first' or 'path-first'
RECOGNITION_MODE = 'hash-first'

AUDIO_EXTENSIONS = ['.ogg', '.mp3', '.wav', '.m4a', '.aac', '.flac', '.opus']

# Globs matched against paths relative to MUSIC_DIR
SCAN_IGNORE_GLOBS = ['._*', '**/._*']

# 'windows' turns "/" in catalog filenames into "\"; defaults to the running OS
# CATALOG_PLATFORM = 'posix'

# Re-run recognition when audio files or the catalog change
ENABLE_LIBRARY_WATCHER = False
WATCHER_DEBOUNCE_SECONDS = 1.0

LOG_LEVEL = 'INFO'
