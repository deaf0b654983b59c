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
"""Squared extrapolation (SQUAREM) for fixed-point iterations

Given a fixed-point map F, e.g. one step of an EM algorithm, SQUAREM takes
two ordinary steps p1 = F(p), p2 = F(p1) and proposes the extrapolated
point

.. math::
    p_{new} = p + 2 \\alpha r + \\alpha^2 v,\\quad r = p_1 - p,\\quad
    v = p_2 - 2 p_1 + p

with a step length alpha computed from r and v [Varadhan2008]_. The
proposal is stabilized by one more application of F and rejected in
favor of p2 when it strays too far. Only the single-step (K=1) scheme
without an objective function is implemented here.

.. [Varadhan2008] "Simple and Globally Convergent Methods for
   Accelerating the Convergence of Any EM Algorithm",
   R. Varadhan, C. Roland,
   Scandinavian Journal of Statistics, 35(2), 2008, 335--353
"""

# Authors: bayesglm developers

import logging
from collections import namedtuple

import numpy as np

logger = logging.getLogger(__name__)

__all__ = [
    "SquaremControl",
    "SquaremResult",
    "squarem",
    "step_length",
]


SquaremControl = namedtuple(
    "SquaremControl",
    ["method", "mstep", "maxiter", "square", "trace", "stepmin0",
     "stepmax0", "kr", "objfninc", "tol"],
    defaults=(3, 4., 1500, True, False, 1., 1., 1., 1., 1e-7))
SquaremControl.__doc__ = """Settings of one SQUAREM run

method : int, default: 3
    Step length formula, 1, 2 or 3 (see `step_length`).

mstep : float, default: 4.
    Factor by which the step length bounds grow or shrink.

maxiter : int, default: 1500
    Maximum number of fixed-point evaluations.

square : bool, default: True
    Use squared extrapolation. If False, plain fixed-point iteration.

trace : bool, default: False
    Log the residual and step length of every iteration at INFO level.

stepmin0, stepmax0 : float, default: 1.
    Initial bounds of the step length.

kr : float, default: 1.
    Scale of the tolerance used to accept a stabilized proposal.

objfninc : float, default: 1.
    Allowed increase of the objective function. Kept for compatibility;
    no objective function is used by this implementation.

tol : float, default: 1e-7
    Convergence tolerance on the norm of successive differences.
"""

SquaremResult = namedtuple(
    "SquaremResult",
    ["par", "value_objfn", "n_iter", "fpevals", "objfevals", "convergence",
     "error"])
SquaremResult.__doc__ = """Outcome of one SQUAREM run

par : 1D array or None
    Last iterate. None when the very first fixed-point evaluation failed.

value_objfn : float
    Always NaN, no objective function is evaluated.

n_iter : int
    Number of outer iterations.

fpevals : int
    Number of successful fixed-point evaluations.

objfevals : int
    Always 0.

convergence : bool
    Whether the tolerance was reached.

error : Exception or None
    The failure that aborted the run, if any.
"""


def step_length(sr2, srv, sv2, method=3):
    """Extrapolation step length

    Parameters
    ----------
    sr2 : float
        Squared norm of r = p1 - p.

    srv : float
        Inner product of r and v = p2 - 2 p1 + p.

    sv2 : float
        Squared norm of v.

    method : {1, 2, 3}
        1: -r'v / v'v, 2: -r'r / r'v, 3: sqrt(r'r / v'v).

    Returns
    -------
    alpha : float
        The step length, possibly infinite or NaN when the
        denominator vanishes.
    """
    with np.errstate(divide="ignore", invalid="ignore"):
        if method == 1:
            return float(-np.float64(srv) / sv2)
        if method == 2:
            return float(-np.float64(sr2) / srv)
        if method == 3:
            return float(np.sqrt(np.float64(sr2) / sv2))
    raise ValueError("Unknown step length method {}".format(method))


def _log_iteration(control, res, extrap, alpha, stepmax):
    level = logging.INFO if control.trace else logging.DEBUG
    logger.log(level, "Residual: %g  Extrapolation: %s  Steplength: %g  "
               "Stepmax: %g", res, extrap, alpha, stepmax)


def squarem(fixptfn, par, control=None):
    """Accelerate the fixed-point iteration p <- fixptfn(p)

    Parameters
    ----------
    fixptfn : callable ``fixptfn(par) -> 1D array``
        The fixed-point map. It may raise `numpy.linalg.LinAlgError`
        (including `NotPositiveDefiniteError`) to signal a numerical
        failure.

    par : 1D array
        Starting value.

    control : SquaremControl, optional
        Settings of the run. Defaults to ``SquaremControl()``.

    Returns
    -------
    SquaremResult
        A new result object. A failure of ``fixptfn`` on one of the two
        plain steps aborts the run and is reported in ``error``. A failure
        during stabilization only rejects the extrapolated proposal.
    """
    if control is None:
        control = SquaremControl()
    if control.method not in (1, 2, 3):
        raise ValueError("Unknown step length method {}"
                         .format(control.method))
    if not control.square:
        return _fixed_point_iteration(fixptfn, par, control)

    stepmin = control.stepmin0
    stepmax = control.stepmax0
    logger.log(logging.INFO if control.trace else logging.DEBUG,
               "Squarem-2")

    p = np.array(par, dtype=np.float64)
    n_par = p.size
    n_iter = 1
    feval = 0
    conv = False
    res = np.nan

    def _failed(err, current):
        logger.warning("Error in fixed-point function evaluation: %s", err)
        return SquaremResult(par=current, value_objfn=np.nan, n_iter=n_iter,
                             fpevals=feval, objfevals=0, convergence=False,
                             error=err)

    while feval < control.maxiter:
        extrap = True
        try:
            p1 = np.asarray(fixptfn(p), dtype=np.float64)
        except np.linalg.LinAlgError as err:
            return _failed(err, p if feval > 0 else None)
        feval += 1
        sr2 = np.sum((p1 - p) ** 2)
        if np.sqrt(sr2) < control.tol:
            conv = True
            break

        try:
            p2 = np.asarray(fixptfn(p1), dtype=np.float64)
        except np.linalg.LinAlgError as err:
            return _failed(err, p)
        feval += 1
        sq2 = np.sqrt(np.sum((p2 - p1) ** 2))
        if sq2 < control.tol:
            conv = True
            break
        res = sq2

        v = p2 - 2. * p1 + p
        sv2 = np.sum(v ** 2)
        srv = np.sum(v * (p1 - p))

        alpha = step_length(sr2, srv, sv2, control.method)
        if np.isnan(alpha):
            alpha = stepmax
        alpha = max(stepmin, min(stepmax, alpha))
        p_new = p + 2. * alpha * (p1 - p) + alpha ** 2 * v

        accepted = True
        if abs(alpha - 1.) > 0.01:
            try:
                p_tmp = np.asarray(fixptfn(p_new), dtype=np.float64)
            except np.linalg.LinAlgError as err:
                logger.debug("Stabilization step failed: %s", err)
                accepted = False
            else:
                feval += 1
                res = np.sqrt(np.sum((p_tmp - p_new) ** 2))
                parnorm = np.sqrt(np.sum(p2 ** 2) / n_par)
                kres = control.kr * (1. + parnorm) + sq2
                if res <= kres:
                    p_new = p_tmp
                else:
                    accepted = False
            if not accepted:
                p_new = p2
                if alpha == stepmax:
                    stepmax = max(control.stepmax0, stepmax / control.mstep)
                alpha = 1.
                extrap = False

        if accepted:
            if alpha == stepmax:
                stepmax = control.mstep * stepmax
            if stepmin < 0 and alpha == stepmin:
                stepmin = control.mstep * stepmin

        p = p_new
        _log_iteration(control, res, extrap, alpha, stepmax)
        n_iter += 1

    if not conv:
        logger.warning("SQUAREM reached %d fixed-point evaluations without "
                       "converging", feval)
    return SquaremResult(par=p, value_objfn=np.nan, n_iter=n_iter,
                         fpevals=feval, objfevals=0, convergence=conv,
                         error=None)


def _fixed_point_iteration(fixptfn, par, control):
    """Plain iteration p <- fixptfn(p) with the same stopping rules"""
    p = np.array(par, dtype=np.float64)
    feval = 0
    n_iter = 0
    conv = False
    while feval < control.maxiter:
        try:
            p_new = np.asarray(fixptfn(p), dtype=np.float64)
        except np.linalg.LinAlgError as err:
            logger.warning("Error in fixed-point function evaluation: %s",
                           err)
            return SquaremResult(par=p if feval > 0 else None,
                                 value_objfn=np.nan, n_iter=n_iter,
                                 fpevals=feval, objfevals=0,
                                 convergence=False, error=err)
        feval += 1
        n_iter += 1
        res = np.sqrt(np.sum((p_new - p) ** 2))
        p = p_new
        _log_iteration(control, res, False, 1., control.stepmax0)
        if res < control.tol:
            conv = True
            break
    return SquaremResult(par=p, value_objfn=np.nan, n_iter=n_iter,
                         fpevals=feval, objfevals=0, convergence=conv,
                         error=None)
