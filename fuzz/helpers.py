import atheris


class EnhancedDataProvider(atheris.FuzzedDataProvider):
    def ConsumeRandomBytes(self) -> bytes:
        return self.ConsumeBytes(self.ConsumeIntInRange(0, self.remaining_bytes()))

    def ConsumeRandomString(self) -> str:
        return self.ConsumeUnicodeNoSurrogates(self.ConsumeIntInRange(0, self.remaining_bytes()))

    def ConsumePath(self, max_depth: int = 4) -> str:
        depth = self.ConsumeIntInRange(0, max_depth)
        return "/".join(self.ConsumeUnicodeNoSurrogates(self.ConsumeIntInRange(0, 8)) for _ in range(depth + 1))
