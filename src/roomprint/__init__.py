"""
roomprint - Acoustic room fingerprinting.

Plays a logarithmic chirp (or just listens), recovers the room's impulse
response and reduces it to fixed-length feature vectors that a room
classifier can be trained on. Phone orientation readings are tracked to
check that training samples cover enough device poses.
"""

from .ambient_features import extract_ambient_features
from .chirp import generate_chirp, get_chirp_config
from .features import extract_features
from .impulse_response import deconvolve, estimate_edt, estimate_rt60, extract_impulse_response
from .main import extract_features_from_capture, extract_orientation_aware_from_capture
from .models import (
    AmbientFeatureVector,
    ChirpMode,
    FeatureSample,
    FeatureVector,
    ImpulseResponse,
    OrientationAwareFeatures,
)
from .orientation import analyze_orientation_diversity, euler_to_quaternion, quaternion_to_euler
from .orientation_aware import extract_orientation_aware_features

__all__ = [
    'AmbientFeatureVector',
    'ChirpMode',
    'FeatureSample',
    'FeatureVector',
    'ImpulseResponse',
    'OrientationAwareFeatures',
    'analyze_orientation_diversity',
    'deconvolve',
    'estimate_edt',
    'estimate_rt60',
    'euler_to_quaternion',
    'extract_ambient_features',
    'extract_features',
    'extract_features_from_capture',
    'extract_impulse_response',
    'extract_orientation_aware_features',
    'extract_orientation_aware_from_capture',
    'generate_chirp',
    'get_chirp_config',
    'quaternion_to_euler',
]
