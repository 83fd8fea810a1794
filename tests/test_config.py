import pytest

from tinyweb.config import Config


def test_defaults():
    config = Config()
    assert config.port == 9006
    assert config.sql_num == 8
    assert config.thread_num == 8
    assert (config.log_write, config.trig_mode, config.opt_linger,
            config.close_log, config.actor_model) == (0, 0, 0, 0, 0)


def test_parse_all_options():
    config = Config()
    config.parse_arg(["-p", "8080", "-l", "1", "-m", "3", "-o", "1",
                      "-s", "4", "-t", "16", "-c", "1", "-a", "1"])
    assert config.port == 8080
    assert config.log_write == 1
    assert config.trig_mode == 3
    assert config.opt_linger == 1
    assert config.sql_num == 4
    assert config.thread_num == 16
    assert config.close_log == 1
    assert config.actor_model == 1


def test_attached_argument():
    config = Config()
    config.parse_arg(["-p8080", "-t4"])
    assert config.port == 8080
    assert config.thread_num == 4


def test_unknown_options_and_operands_are_ignored():
    config = Config()
    config.parse_arg(["-x", "stray", "-p", "7000"])
    assert config.port == 7000
    assert config.thread_num == 8


@pytest.mark.parametrize("value,expected", [("abc", 0), ("12xyz", 12), (" -3", -3)])
def test_values_read_like_atoi(value, expected):
    config = Config()
    config.parse_arg(["-s", value])
    assert config.sql_num == expected


def test_missing_argument_leaves_default():
    config = Config()
    config.parse_arg(["-p"])
    assert config.port == 9006


def test_double_dash_stops_parsing():
    config = Config()
    config.parse_arg(["-t", "2", "--", "-t", "9"])
    assert config.thread_num == 2