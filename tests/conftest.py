import pandas as pd
import pytest

from etl.pipeline import build_engine, clean
from etl.queries import run_all

from tests.sample_data import RAW_COLUMNS, RAW_ROWS


@pytest.fixture
def raw_encounters():
    return pd.DataFrame(RAW_ROWS, columns=RAW_COLUMNS)


@pytest.fixture
def encounters(raw_encounters):
    cleaned, _ = clean(raw_encounters)
    return cleaned


@pytest.fixture
def engine(encounters):
    return build_engine(encounters)


@pytest.fixture
def results(engine):
    return run_all(engine)
