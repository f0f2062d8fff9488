"""
Request scripts used by the rebalancing consumer.

fetch_result: ask the optimizer for a finished diversification job and return
    its (id, weight) pairs as packed records.
schedule_optimization: submit token-price batches to the optimizer and return
    the job reference as a string.

Both read the optimizer key from the `oracleAPIKey` secret.
"""

from typing import Dict

DIVERSIFICATION_RESULT_URL = "https://api-production-5752.up.railway.app/get-diversification-result"
DIVERSIFY_URL = "https://api-production-e08a.up.railway.app/diversify"

_FETCH_RESULT = '''
job_id = args[0]
response = httpRequest(
    "$URL",
    method="POST",
    headers={
        "accept": "application/json",
        "content-type": "application/json",
        "authorization": "Bearer " + secret("oracleAPIKey"),
    },
    body=job_id,
)
if response.failed:
    raise Exception("api request failed")

data = response.body
words = [encodeUint(len(data))]
for item in data:
    words.append(encodeUint(int(item["id"])))
    words.append(encodeUint(int(item["weight"])))
return b"".join(words)
'''

_SCHEDULE_OPTIMIZATION = '''
total_batches = int(args[0])
batches = [args[i + 1] for i in range(total_batches)]
response = httpRequest(
    "$URL",
    method="POST",
    headers={
        "accept": "application/json",
        "content-type": "application/json",
        "authorization": "Bearer " + secret("oracleAPIKey"),
    },
    body={"hashes": batches},
)
if response.failed:
    raise Exception("api request failed")

data = response.body
return encodeString(data if isinstance(data, str) else str(data))
'''


def fetch_result_source(url: str = DIVERSIFICATION_RESULT_URL) -> str:
    return _FETCH_RESULT.replace("$URL", url)


def schedule_optimization_source(url: str = DIVERSIFY_URL) -> str:
    return _SCHEDULE_OPTIMIZATION.replace("$URL", url)


SOURCES: Dict[str, str] = {
    "fetch_result": fetch_result_source(),
    "schedule_optimization": schedule_optimization_source(),
}


def load_source(name: str) -> str:
    try:
        return SOURCES[name]
    except KeyError:
        raise KeyError(f"Unknown request script {name!r}; known: {sorted(SOURCES)}") from None
