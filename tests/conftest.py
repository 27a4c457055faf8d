"""Shared fixtures for unit and integration tests."""

from collections.abc import Mapping

import pytest

OPENMP_SOURCE = """\
#include <stdio.h>

#include <omp.h>

/* Print the index of every thread in the team. */
int main()
{
#pragma omp parallel
  {
    printf("%d of %d\\n", omp_get_thread_num() + 1, omp_get_num_threads());
  }

  return 0;
}


/* CMake-easytest configuration.
 *
 * CONFIGS: sort env
 *
 * COMPILE_FLAGS: @OpenMP_C_FLAGS@
 * LINK: @OpenMP_C_FLAGS@
 *
 *
 * ENVIRONMENT-sort: OMP_NUM_THREADS=4
 * RUN-sort: @BINARY@ | @sort@
 * PASS-sort: 1.*2.*3.*4
 *
 * ENVIRONMENT-env: OMP_NUM_THREADS=1
 * FAIL-env: 2
 */
"""


@pytest.fixture
def openmp_source() -> str:
    """Source of the OpenMP sample fixture."""
    return OPENMP_SOURCE


@pytest.fixture
def openmp_symbols() -> Mapping[str, str]:
    """Symbols needed to resolve the OpenMP sample fixture."""
    return {"OpenMP_C_FLAGS": "-fopenmp", "sort": "sort"}
