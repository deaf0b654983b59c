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
"""Hyperparameter estimation for spatial Bayesian GLMs with SPDE priors

The coefficient fields of a multi-task, multi-session imaging GLM are
given Matern-like Gaussian Markov random field priors built on a mesh with
the SPDE approach. This package estimates the range and scale of those
priors and the residual variance with an EM algorithm accelerated by
SQUAREM, and returns the posterior mean of the coefficients.
"""

__version__ = "0.1.0"
