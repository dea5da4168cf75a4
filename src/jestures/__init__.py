"""jestures - Real-time DTW template gesture recognition."""

__version__ = "0.1.0"

from jestures.settings import RecognitionSettings, SettingsError, UpdateRate, GestureLength
from jestures.codifier import FeatureCodifier, SmoothingCodifier
from jestures.dtw import DtwMatcher, dtw_distance
from jestures.tracker import Tracker
from jestures.templates import TemplateLibrary, TemplateStore
from jestures.listeners import RecognitionListener, FrameObserver, ListenerRegistry
from jestures.serialization import Serializer, UserManager
from jestures.recognizer import Recognizer, Recognition, RecognitionResult, RecognitionState, vote
from jestures.session import SampleRecorder, SamplePlayer
from jestures.profiler import PassTiming, RecognitionProfiler
from jestures.metrics import MetricsCollector
