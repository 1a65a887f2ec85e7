# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Hybrid Alpha Calibration Service initialization."""

__version__ = "1.0.0"

from .models import (  # noqa: E402
    AlphaConfig,
    CalibrationReport,
    Candidate,
    QueryAnalysis,
    RetrievalMetrics,
    SweepResult,
)
from .services import CalibrationService, HybridSearchExecutor  # noqa: E402
from .utils import AlphaPolicy  # noqa: E402

__all__ = [
    "AlphaConfig",
    "AlphaPolicy",
    "CalibrationReport",
    "CalibrationService",
    "Candidate",
    "HybridSearchExecutor",
    "QueryAnalysis",
    "RetrievalMetrics",
    "SweepResult",
    "__version__",
]
