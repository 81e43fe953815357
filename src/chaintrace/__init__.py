from dotenv import load_dotenv
load_dotenv()

# Expose key classes for easier imports
from .models import Edge, RiskSummary, RiskTag, TraceJob, TraceResult
from .cache import ResultCache
from .classification import RiskAnnotator
from .tracer import TraceOrchestrator
from .trace_postprocess import RiskAggregator
from .jobs import TraceJobManager
