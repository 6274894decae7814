import jax.numpy as jnp

from jax_jfnk import ConvergenceTolerances, find_root


def residual(y):
    """
    Stiff 2x2 linear system with its root at the origin:
    F(y) = [-101 y0 - 100 y1, y0]
    """
    return jnp.array([-101.0 * y[0] - 100.0 * y[1], y[0]])


def jvp(y, v):
    """Analytic Jacobian-vector product of `residual`."""
    return jnp.array([-101.0 * v[0] - 100.0 * v[1], v[0]])


def main(use_analytic_jvp=False, tol=1e-5):
    """
    Solve the stiff linear system from y = [2, 1] with unit scaling.

    Arguments:
        use_analytic_jvp - Use `jvp` instead of finite differences (default False)
        tol - Residual and step tolerance (default 1e-5)
    """
    y0 = jnp.array([2.0, 1.0])
    scale = jnp.ones(2)
    tolerances = ConvergenceTolerances(fnorm_tol=tol, step_tol=tol)

    result = find_root(
        residual,
        y0,
        y_scale=scale,
        f_scale=scale,
        tolerances=tolerances,
        jvp=jvp if use_analytic_jvp else None,
        verbose=True,
    )

    print("Final value of y:")
    for i, value in enumerate(result.y):
        print(f"  y[{i}] = {float(value): .6e}")


if __name__ == "__main__":
    main()
