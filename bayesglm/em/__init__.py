#  Copyright 2024 bayesglm developers
#
#  Licensed under the Apache License, Version 2.0 (the "License");
#  you may not use this file except in compliance with the License.
#  You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
#  Unless required by applicable law or agreed to in writing, software
#  distributed under the License is distributed on an "AS IS" BASIS,
#  WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#  See the License for the specific language governing permissions and
#  limitations under the License.
"""EM estimation of the hyperparameters of the spatial Bayesian GLM."""

from .estimator import SpdeHyperparameterEM  # noqa: F401
from .fixed_point import (  # noqa: F401
    InitFixedPoint,
    ThetaFixedPoint,
    kappa2_init_obj,
    kappa2_obj,
    make_joint_precision,
)
from .theta import ThetaEstimate, find_theta, initial_kp  # noqa: F401
