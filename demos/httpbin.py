import asyncio
import logging
import sys

import jady


def response_str(response: jady.Response) -> str:
    sep = '-------------------------'
    result = f'\n{sep}\n'
    result += f'{response.status} {response.status_text} {response.url}\n'
    for name, value in response.headers.items():
        result += f'{name}: {value}\n'
    result += f'\nattempts: {len(response.attempts)}'
    result += f'\ntotal duration: {response.total_duration:.3f}s\n'
    result += f'\n{response.body}\n{sep}'
    return result


async def main() -> int:
    if len(sys.argv) < 2:
        endpoint = input('Enter an httpbin endpoint (e.g. /get, /status/503): ').strip()
    else:
        endpoint = sys.argv[1].strip()

    client = jady.create(
        base_url='https://httpbin.org',
        retry=2,
        retry_delay=lambda attempt, _: 0.5 * attempt,
        total_timeout=20.0,
        request_id='demo',
    )

    exit_code = 1
    try:
        response = await client.get(endpoint, params={'source': 'jady-demo'})
        print(response_str(response))
        exit_code = 0 if response.ok else 1
    except jady.JadyError as exc:
        print(f'Request failed ({exc.code.value}) after {len(exc.attempts)} attempt(s): {exc}')
    except ValueError as exc:
        print(f'Invalid request: {exc}')

    return exit_code


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    sys.exit(
        asyncio.run(main())
    )
