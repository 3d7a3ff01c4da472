import logging
import sys

from sms_flows.flows.processor import run_invocation

logging.getLogger().handlers.clear()
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(message)s",
    datefmt="%H:%M:%S",
)

if __name__ == "__main__":
    # One invocation per call; schedule with system cron
    summary = run_invocation()
    logging.info("%s", summary.model_dump_json())
    sys.exit(0 if summary.success else 1)
