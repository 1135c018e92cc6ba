"""
Configuration settings related to audio processing.

Defines the loudness targets of the two-pass normalization, the headroom of the
peak-based normalization, and the parameters of the high-efficiency (Opus)
audio re-encode.
"""

# --- Normalization Levels ---
# Minimum normalization level enabling each analysis.
CROP_DETECT_LEVEL = 1
TITLE_SYNTH_LEVEL = 2
PEAK_NORMALIZE_LEVEL = 3
DEINTERLACE_LEVEL = 3
LOUDNORM_LEVEL = 4
DYNAMIC_NORMALIZE_LEVEL = 5

# --- Two-pass loudness normalization (EBU R128) ---
LOUDNORM_TARGET_I = -16
LOUDNORM_TARGET_TP = -2.0
LOUDNORM_TARGET_LRA = 11

# --- Peak normalization ---
PEAK_HEADROOM_DB = 2.0
# Streams altered by a volume filter are re-encoded at this fixed tier.
NORMALIZED_AUDIO_CODEC = "aac"
NORMALIZED_AUDIO_KBPS_PER_CHANNEL = 128

# --- High-efficiency audio ---
HE_AUDIO_CODEC = "libopus"
HE_AUDIO_TITLE_CODEC = "OPUS"
HE_AUDIO_DEFAULT_KBPS_PER_CHANNEL = 40
HE_AUDIO_FRAME_DURATION = 60
HE_AUDIO_CHANNEL_LAYOUTS = "7.1|5.1|stereo"
# Streams with more channels than this are downmixed when downmixing is on.
HE_AUDIO_DOWNMIX_THRESHOLD = 3
HE_AUDIO_DOWNMIX_FILTER = "aresample=matrix_encoding=dplii"

# Lossless codecs are left alone by the high-efficiency remux unless forced.
LOSSLESS_AUDIO_CODECS = ("flac", "alac", "truehd", "mlp")
LOSSLESS_AUDIO_PREFIXES = ("pcm_",)
