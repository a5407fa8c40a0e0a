"""Command-line entry point: ``python -m glmmcompare DATA``."""

import argparse
import logging
import sys

from glmmcompare.core.config import DEFAULT_FORMULA
from glmmcompare.core.exceptions import GLMMCompareError
from glmmcompare.workflow import run_comparison


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog='glmmcompare',
        description='Compare GLMM fits of the Python engine and lme4',
    )
    parser.add_argument('path', help='Delimited observation table (.csv, .tsv, .tab)')
    parser.add_argument('--formula', default=DEFAULT_FORMULA)
    parser.add_argument('--successes', default='succ', help='Success count column')
    parser.add_argument('--failures', default='fail', help='Failure count column')
    parser.add_argument('--link', default='cloglog')
    parser.add_argument('--python-only', action='store_true',
                        help='Skip the lme4 fits')
    parser.add_argument('--verbose', '-v', action='store_true')
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        run_comparison(
            args.path,
            formula=args.formula,
            successes=args.successes,
            failures=args.failures,
            link=args.link,
            with_r=not args.python_only,
        )
    except GLMMCompareError as e:
        logging.getLogger('glmmcompare').error("%s", e)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
