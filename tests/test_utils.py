import datetime as _dt
import json

import pytest

from dex_swap_fetcher.core.normalizer import normalize_swap
from dex_swap_fetcher.core.utils import atomic_write_json, normalize_address, to_unix, trades_to_frame
from tests.conftest import make_swap


@pytest.mark.parametrize(
    "value",
    [
        1_729_153_055,
        "1729153055",
        "2024-10-17T08:17:35Z",
        "2024-10-17 10:17:35+02:00",
        _dt.datetime(2024, 10, 17, 8, 17, 35, tzinfo=_dt.timezone.utc),
    ],
)
def test_to_unix(value):
    assert to_unix(value) == 1_729_153_055


def test_normalize_address():
    assert normalize_address(" 0xABCdef ") == "0xabcdef"
    assert normalize_address(None) is None


def test_atomic_write_json_replaces_file(tmp_path):
    path = tmp_path / "nested" / "cursor.json"
    atomic_write_json(str(path), {"a": 1})
    atomic_write_json(str(path), {"a": 2})

    assert json.loads(path.read_text()) == {"a": 2}
    assert [p.name for p in path.parent.iterdir()] == ["cursor.json"]


def test_trades_to_frame():
    trades = [normalize_swap(make_swap(1_729_153_055 + i, amount0_in="2", amount1_out="5"), "aerodrome") for i in range(3)]
    df = trades_to_frame(trades)

    assert len(df) == 3
    assert df["amountIn"].tolist() == ["2", "2", "2"]
    assert df["price_float"].tolist() == [2.5, 2.5, 2.5]
    assert str(df["tradeTimestamp"].dt.tz) == "UTC"


def test_trades_to_frame_empty():
    assert trades_to_frame([]).empty
