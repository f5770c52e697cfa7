"""
mood_search — Mood-biased image fingerprinting and nearest-record search.

Reduces an uploaded image to a short feature vector, summarizes it as
normalized (mean, variance), shifts that point by a mood label, and finds
the closest previously recorded entries in a document collection.

Modules:
    engine            Main SearchEngine class
    pixel_features    Grid-average pixel feature extraction
    network_features  MobileNet activation subsampling + ModelService
    stats             Mean/variance statistics and normalization
    emotion           Mood offsets → plotting coordinates
    scoring           Euclidean nearest-record ranking
    store             Collection store access and record coercion
    preprocessing     Image decoding, resampling and network input prep
    errors            Error taxonomy
"""

__version__ = "1.0.0"
