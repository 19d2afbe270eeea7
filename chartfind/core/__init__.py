from .chart_spec import ChartTopology, builtin_topologies, load_chart_topologies
from .config import (
	DetectionConfig,
	DEFAULT_CONFIG,
	HIGH_RECALL_CONFIG,
	SearchBudget,
	create_detection_config,
	load_detection_config,
)
from .detector import ChartDetector, detect
from .errors import ChartDetectionError, DegenerateCell, InvalidQuadrilateral, UnsupportedFormat
from .normalize import Raster, normalize_raster
from .types import Found, NotFound, Orientation, PatchColor, Quadrilateral

__all__ = [
	"ChartDetector",
	"ChartTopology",
	"DetectionConfig",
	"DEFAULT_CONFIG",
	"HIGH_RECALL_CONFIG",
	"SearchBudget",
	"create_detection_config",
	"load_detection_config",
	"builtin_topologies",
	"load_chart_topologies",
	"detect",
	"ChartDetectionError",
	"DegenerateCell",
	"InvalidQuadrilateral",
	"UnsupportedFormat",
	"Raster",
	"normalize_raster",
	"Found",
	"NotFound",
	"Orientation",
	"PatchColor",
	"Quadrilateral",
]
