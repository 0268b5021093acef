import asyncio
import time
from dataclasses import dataclass, field
from typing import List

import aiohttp
from django.core.management.base import BaseCommand, CommandError


@dataclass
class LoadStats:
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    latencies: List[float] = field(default_factory=list)

    def record(self, ok, latency):
        self.total += 1
        self.latencies.append(latency)
        if ok:
            self.succeeded += 1
        else:
            self.failed += 1

    def record_failed_login(self, requests_per_user):
        self.total += requests_per_user
        self.failed += requests_per_user

    @property
    def mean_latency(self):
        return sum(self.latencies) / len(self.latencies) if self.latencies else 0.0

    @property
    def success_rate(self):
        return self.succeeded / self.total * 100 if self.total else 0.0


async def simulate_student(base_url, exam_id, code, requests_per_user, delay, stats):
    jar = aiohttp.CookieJar(unsafe=True)
    async with aiohttp.ClientSession(cookie_jar=jar) as session:
        async with session.post(f'{base_url}/exam/login/', data={'student-code': code}) as response:
            if response.status != 200:
                stats.record_failed_login(requests_per_user)
                return f'{code}: login failed with {response.status}'

        for _ in range(requests_per_user):
            started = time.perf_counter()
            try:
                async with session.get(f'{base_url}/exam/{exam_id}/status/') as response:
                    await response.read()
                    ok = response.status == 200
            except aiohttp.ClientError:
                ok = False
            stats.record(ok, (time.perf_counter() - started) * 1000)
            await asyncio.sleep(delay)
    return None


async def run_load_test(base_url, exam_id, codes, users, requests_per_user, delay):
    stats = LoadStats()
    tasks = [
        simulate_student(base_url, exam_id, codes[i % len(codes)], requests_per_user, delay, stats)
        for i in range(users)
    ]
    errors = await asyncio.gather(*tasks)
    return stats, [error for error in errors if error]


class Command(BaseCommand):
    help = 'Simulates concurrent students polling a running exam server'

    def add_arguments(self, parser):
        parser.add_argument('exam_id')
        parser.add_argument('codes', nargs='+', help='Entry codes to log in with; reused round-robin')
        parser.add_argument('--base-url', default='http://localhost:8000')
        parser.add_argument('--users', type=int, default=10)
        parser.add_argument('--requests', type=int, default=20, help='Requests per student')
        parser.add_argument('--delay', type=float, default=0.5, help='Seconds between requests')

    def handle(self, *args, **options):
        if options['users'] < 1 or options['requests'] < 1:
            raise CommandError('--users and --requests must be positive')
        if len(options['codes']) < options['users']:
            self.stdout.write(self.style.WARNING(
                f"Only {len(options['codes'])} codes for {options['users']} students; codes will be reused"
            ))

        started = time.perf_counter()
        stats, errors = asyncio.run(run_load_test(
            options['base_url'].rstrip('/'),
            options['exam_id'],
            [code.upper() for code in options['codes']],
            options['users'],
            options['requests'],
            options['delay'],
        ))
        duration = time.perf_counter() - started

        for error in errors:
            self.stderr.write(error)

        rate = stats.total / duration if duration > 0 else 0.0
        self.stdout.write(f"Total requests: {stats.total}")
        self.stdout.write(self.style.SUCCESS(f"Succeeded: {stats.succeeded}"))
        self.stdout.write(self.style.ERROR(f"Failed: {stats.failed}"))
        self.stdout.write(f"Requests per second: {rate:.2f}")
        self.stdout.write(f"Mean latency: {stats.mean_latency:.2f}ms")
        self.stdout.write(f"Duration: {duration:.2f}s")
        self.stdout.write(f"Success rate: {stats.success_rate:.2f}%")
