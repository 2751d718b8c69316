"""Configuration constants for bird call identification."""

# Audio Configuration
DEFAULT_SAMPLE_RATE = 22050  # Hz, the rate the classifier was calibrated at
DEFAULT_N_FFT = 2048  # samples per analysis window
DEFAULT_HOP_LENGTH = 512  # samples between successive frames
DEFAULT_N_MELS = 128  # mel filterbank bands
DEFAULT_N_MFCC = 40  # cepstral coefficients kept per frame
DEFAULT_NUM_CHROMA_BINS = 12  # pitch classes
DEFAULT_MAX_DURATION = 5.0  # seconds - input is padded/truncated to this
DEFAULT_MAX_LENGTH = int(DEFAULT_SAMPLE_RATE * DEFAULT_MAX_DURATION)  # samples
DEFAULT_WINDOW = "hann"  # window applied to each frame before the FFT

# Spectral Descriptors
SPECTRAL_ROLLOFF_PERCENT = 0.85  # fraction of total spectral energy
MEL_FMIN_HZ = 0.0  # lowest mel filter edge
CHROMA_MIN_FREQ_HZ = 27.5  # bins below A0 are not folded into chroma
CHROMA_REFERENCE_HZ = 16.351597831287414  # C0, pitch class 0
LOG_AMIN = 1e-10  # floor applied before taking the log of mel energies

# File Validation
MAX_AUDIO_FILE_SIZE = 50 * 1024 * 1024  # 50MB
ALLOWED_AUDIO_EXTENSIONS = ("wav", "mp3", "ogg", "m4a")
ALLOWED_AUDIO_MIME_TYPES = (
    "audio/wav",
    "audio/x-wav",
    "audio/wave",
    "audio/mp3",
    "audio/mpeg",
    "audio/ogg",
    "audio/m4a",
    "audio/x-m4a",
    "audio/mp4",
)

# Decision Policy
CONFIDENCE_THRESHOLD = 0.8  # minimum top-class probability shown as a match
PROBABILITY_SUM_TOLERANCE = 1e-3  # allowed deviation of sum(probabilities) from 1

# Job Control
DEFAULT_JOB_TIMEOUT = 60.0  # seconds before an unfinished job fails
DEFAULT_WORKER_THREADS = 2  # superseded jobs may still be draining
PROGRESS_REPORT_STEPS = 50  # extractor reports at most this many updates

# Job-level percent band (start, end) occupied by each stage
STAGE_PROGRESS_BANDS = {
    "loading": (0.0, 10.0),
    "preprocessing": (10.0, 20.0),
    "extracting": (20.0, 80.0),
    "predicting": (80.0, 95.0),
    "complete": (100.0, 100.0),
}

# Inference
ONNX_EXECUTION_PROVIDERS = ["CPUExecutionProvider"]

# Remote Identification Endpoint
DEFAULT_REMOTE_TIMEOUT = 30.0  # seconds
REMOTE_PREDICTION_PATH = "prediction/"
REMOTE_UPLOAD_FIELD = "audio_file"
REMOTE_UPLOAD_CHUNK_SIZE = 64 * 1024  # bytes per upload progress step
