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
"""Bounded univariate minimization

Brent's method [Brent1973]_ combines golden section search with successive
parabolic interpolation and needs no derivatives. SciPy's bounded scalar
minimizer implements it; this module fixes the tolerance semantics used
by the EM searches over kappa2. For an objective that is not unimodal on
the interval, a local minimum is returned.

.. [Brent1973] "Algorithms for Minimization without Derivatives",
   R. P. Brent, Prentice-Hall, 1973, chapter 5
"""

# Authors: bayesglm developers

import logging

from scipy import optimize

logger = logging.getLogger(__name__)

__all__ = [
    "brent_minimize",
]

MAX_ITER = 1000


def brent_minimize(func, lower, upper, tol, args=()):
    """Minimize a scalar function on a bounded interval

    Parameters
    ----------
    func : callable ``func(x, *args) -> float``
        Objective function.

    lower, upper : float
        End points of the search interval. The objective is never
        evaluated at the end points themselves.

    tol : float
        Absolute tolerance on the abscissa of the minimum.

    args : tuple, optional
        Extra arguments passed to func.

    Returns
    -------
    x : float
        Approximate location of the minimum.
    """
    if not lower < upper:
        raise ValueError("lower must be smaller than upper, got [{}, {}]"
                         .format(lower, upper))
    res = optimize.minimize_scalar(func, bounds=(lower, upper),
                                   method="bounded", args=args,
                                   options=dict(xatol=tol,
                                                maxiter=MAX_ITER))
    if not res.success:
        logger.warning("Brent search on [%g, %g] stopped after %d "
                       "evaluations: %s", lower, upper, res.nfev,
                       res.message)
    logger.debug("Brent search on [%g, %g] found x=%g after %d "
                 "evaluations", lower, upper, res.x, res.nfev)
    return float(res.x)
