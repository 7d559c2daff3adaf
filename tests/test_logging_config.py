import json
import logging
import unittest

from config.logging_config import JsonFormatter, configure_logging
from services.ai.analysis.errors import ErrorCode


class LoggingConfigTests(unittest.TestCase):
    def tearDown(self):
        configure_logging(level="INFO", json_logs=False)

    def test_json_formatter_single_line_with_extras(self):
        record = logging.LogRecord("services.ai.analysis", logging.WARNING, __file__, 1, "analysis.failed code=%s", ("Timeout",), None)
        record.code = ErrorCode.TIMEOUT
        line = JsonFormatter().format(record)

        self.assertNotIn("\n", line)
        payload = json.loads(line)
        self.assertEqual(payload["level"], "WARNING")
        self.assertEqual(payload["message"], "analysis.failed code=Timeout")
        self.assertEqual(payload["code"], "Timeout")
        self.assertNotIn("args", payload)

    def test_configure_replaces_handlers(self):
        configure_logging(level="DEBUG", json_logs=True)
        configure_logging(level="DEBUG", json_logs=True)
        root = logging.getLogger()
        self.assertEqual(len(root.handlers), 1)
        self.assertIsInstance(root.handlers[0].formatter, JsonFormatter)
        self.assertEqual(root.level, logging.DEBUG)
        self.assertEqual(logging.getLogger("httpx").level, logging.WARNING)


if __name__ == "__main__":
    unittest.main()
