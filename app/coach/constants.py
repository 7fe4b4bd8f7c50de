MAX_UPLOAD_BYTES = 100 * 1024 * 1024   # 100 MB (video files are larger than audio)
MAX_AUDIO_UPLOAD_BYTES = 25 * 1024 * 1024  # Whisper rejects files above 25 MB
MAX_REQUEST_BYTES = 150 * 1024 * 1024  # 150 MB (video + optional audio)
CHUNK_SIZE = 1024 * 1024
UNSET = object()

# Contact sheet layout
MAX_SHEETS = 50
FRAMES_PER_SHEET = 9  # 3x3 grid
GRID_SIZE = 3
BASELINE_INTERVAL_SEC = 0.5
