import sys

from gmpy2 import mpq

import utils

# Both formulas compute the d-th coefficient of
#
#   2F1(2,1-m;S-m+2;-x)^2 - 2F1(1,-m;S-m+1;-x) 2F1(3,2-m;S-m+3;-x)
#
# and must agree exactly.  Give each a unique 'formula' name so it can be
# chosen from the command line.


class FormulaMismatch(ValueError):
    pass


def validate(S, m):
    '''
    The engine is only defined for 2 <= m < S (m = S is trivially zero).  This
    keeps 2-m+S, 1-m+S and 3-m+S strictly positive so nothing divides by zero.
    '''
    return 2 <= m < S


def _check_domain(S, m, d):
    if not validate(S, m):
        raise ValueError(f'Expected 2 <= m < S, got S={S} m={m}')
    if not 1 <= d <= 2*m - 2:
        raise ValueError(f'Expected 1 <= d <= {2*m - 2}, got d={d}')


def direct(S, m, d, c):
    """
    Sums the product series term by term.

    Parameters:
        S, m - integer parameters with 2 <= m < S
        d    - the power of x, 1 <= d <= 2m-2
        c    - a PochhammerCache
    """
    _check_domain(S, m, d)

    pch, pch_f = c.rising, c.falling
    total = mpq(0)

    for k in range(d + 1):
        total += (d-k+1) * (k+1) * pch_f(m-1, d-k) * pch_f(m-1, k) \
            / ( pch(2-m+S, d-k) * pch(2-m+S, k) )

        total -= (d-k+1) * (d-k+2) * pch_f(m-2, d-k) * pch_f(m, k) \
            / ( 2 * pch(1-m+S, k) * pch(3-m+S, d-k) )

    return total

direct.formula = 'direct'


def factored(S, m, d, c):
    """
    Same value as direct() but every term is pulled back onto factorials of
    length one less, so the two halves of each term share their cache lookups.

    The sum is split into k = 0, 0 < k < d and k = d.
    """
    _check_domain(S, m, d)

    pch, pch_f = c.rising, c.falling
    total = mpq(0)

    # k = 0
    total += (d+1) * pch_f(m-2, d-1) / pch(3-m+S, d-1) * (
        mpq(m-1, 2-m+S) - mpq((d+2) * (m-1-d), 2 * (2-m+S+d))
    )

    # 0 < k < d
    for k in range(1, d):
        total += (d-k+1) * pch_f(m-2, d-k-1) * pch_f(m-1, k-1) \
            / ( pch(3-m+S, d-k-1) * pch(2-m+S, k-1) ) * (
                mpq((k+1) * (m-1) * (m-k), (2-m+S) * (1-m+S+k))
                - mpq((d-k+2) * (m-1-d+k) * m, 2 * (2-m+S+d-k) * (1-m+S))
            )

    # k = d
    total += pch_f(m-1, d-1) / pch(2-m+S, d-1) * (
        mpq((d+1) * (m-d), 1-m+S+d) - mpq(m, 1-m+S)
    )

    return total

factored.formula = 'factored'


FORMULAS = utils.get_funcs(sys.modules[__name__], 'formula')


def get_formula(name):
    if name not in FORMULAS:
        raise ValueError(f'Unknown formula: {name}. Expected one of {", ".join(sorted(FORMULAS))}')
    return FORMULAS[name]


def coefficients(S, m, c, formula=factored):
    '''
    Returns [phi(S,m,1), ..., phi(S,m,2m-2)]
    '''
    return [formula(S, m, d, c) for d in range(1, 2*m - 1)]


def check(S, m, c, formula=factored):
    '''
    Returns the coefficients for (S, m) and whether any of them is negative.
    A negative coefficient is the thing we are looking for, not an error.
    '''
    coeffs = coefficients(S, m, c, formula)
    return coeffs, any(coeff < 0 for coeff in coeffs)


def verify(S, m, c):
    '''
    Evaluates both formulas for every d and raises FormulaMismatch on the first
    disagreement.  Returns the (agreeing) coefficients.
    '''
    result = []

    for d in range(1, 2*m - 1):
        slow = direct(S, m, d, c)
        fast = factored(S, m, d, c)
        if slow != fast:
            raise FormulaMismatch(f'S={S} m={m} d={d}: direct {slow} != factored {fast}')
        result.append(fast)

    return result


def format_line(S, m, coeffs):
    return ' '.join([f'S={S}', f'm={m}'] + [str(coeff) for coeff in coeffs])


if __name__ == "__main__":
    #
    # just run this file to run the smoke tests:
    #
    #   python algorithms.py
    #
    from cache import PochhammerCache

    c = PochhammerCache()

    # 2F1(2,-1;3;-x)^2 - 2F1(1,-2;2;-x) = x/3 + x^2/9
    res = coefficients(3, 2, c)
    assert (res == [mpq(1, 3), mpq(1, 9)]), f'Expected [1/3, 1/9] got {res}'

    for S in range(3, 10):
        for m in range(2, S):
            verify(S, m, c)

    assert (format_line(3, 2, res) == 'S=3 m=2 1/3 1/9')

    print('All algorithms tests passed')
