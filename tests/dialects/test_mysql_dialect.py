from quarry.dialects import LockMode, MySQLDialect


def test_mysql_dialect_quotes_identifiers():
    dialect = MySQLDialect()
    assert dialect.quote_identifier("user`name") == "`user``name`"
    assert dialect.format_table("analytics.events") == "`analytics`.`events`"


def test_mysql_limit_clause():
    dialect = MySQLDialect()
    assert dialect.limit_clause(10, None) == "LIMIT 10"
    assert dialect.limit_clause(None, 5) == "LIMIT 18446744073709551615 OFFSET 5"
    assert dialect.limit_clause(10, 5) == "LIMIT 10 OFFSET 5"


def test_mysql_placeholder():
    dialect = MySQLDialect()
    assert dialect.parameter_placeholder() == "%s"


def test_mysql_lock_clauses():
    dialect = MySQLDialect()
    assert dialect.lock_clause(LockMode.NONE) == ""
    assert dialect.lock_clause(LockMode.PESSIMISTIC_READ) == "LOCK IN SHARE MODE"
    assert dialect.lock_clause(LockMode.PESSIMISTIC_WRITE) == "FOR UPDATE"


def test_mysql_has_no_returning_and_uses_auto_increment():
    dialect = MySQLDialect()
    assert dialect.capabilities.supports_returning is False
    assert dialect.returning_clause("id") == ""
    assert dialect.render_auto_primary_key("id") == "`id` BIGINT AUTO_INCREMENT PRIMARY KEY"
