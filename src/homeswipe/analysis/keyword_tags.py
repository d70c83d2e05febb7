"""
Deteccion de tags por texto libre.

Se usa como fallback cuando no hay LLM configurado pero si tenemos
la descripcion de features de la direccion (busqueda web).
"""

import re
import unicodedata

from homeswipe.models import ListingTags

# Líneas de subte de NYC (sin shuttles)
SUBWAY_LINES = {
    "1", "2", "3", "4", "5", "6", "7",
    "A", "B", "C", "D", "E", "F", "G", "J", "L", "M", "N", "Q", "R", "W", "Z",
}

_LINE = r"(?:[1-7]|[ABCDEFGJLMNQRWZ])"
# "A, C and E trains", "the Q/R line", "2 & 3 subway"
LINE_GROUP_PATTERN = (
    rf"\b({_LINE}(?:\s*(?:,|/|&|\band\b|\bor\b)\s*{_LINE})*)\s+(?:trains?|lines?|subway)\b"
)


class KeywordTagDetector:
    """Detector simple basado en keywords + negaciones cercanas."""

    FEATURE_PATTERNS: dict[str, list[str]] = {
        "natural_light": [
            r"\bnatural light\b",
            r"\bsun[- ]?(?:lit|drenched|filled)\b",
            r"\bsunny\b",
            r"\bbright\b",
            r"\boversized windows\b",
            r"\bfloor[- ]to[- ]ceiling windows\b",
        ],
        "elevator": [r"\belevators?\b", r"\blifts?\b"],
        "laundry_in_building": [
            r"\blaundry (?:room|facilit(?:y|ies)) in (?:the )?building\b",
            r"\bon[- ]site laundry\b",
            r"\blaundry room\b",
            r"\bshared laundry\b",
            r"\bcommon laundry\b",
        ],
        "laundry_in_unit": [
            r"\bin[- ]unit (?:laundry|washer)\b",
            r"\bwasher(?:/| and | & )dryer in (?:the )?unit\b",
            r"\bw/d in unit\b",
            r"\bwasher/dryer\b",
        ],
        "doorman": [r"\bdoorman\b", r"\bdoormen\b", r"\bconcierge\b", r"\bfull[- ]time door\b"],
        "pet_friendly": [
            r"\bpet[- ]friendly\b",
            r"\bpets? (?:allowed|welcome|ok)\b",
            r"\bdogs? (?:allowed|welcome|ok)\b",
            r"\bcats? (?:allowed|welcome|ok)\b",
        ],
        "dishwasher": [r"\bdishwashers?\b"],
        "renovated": [
            r"\brenovated\b",
            r"\bgut[- ]renovat",
            r"\bnewly (?:updated|remodeled)\b",
            r"\bremodeled\b",
            r"\bnew construction\b",
        ],
    }

    WALKUP_PATTERNS: list[str] = [r"\bwalk[- ]?ups?\b", r"\bno elevator\b"]

    QUIET_PATTERNS: list[str] = [
        r"\bquiet\b",
        r"\bpeaceful\b",
        r"\btree[- ]lined\b",
        r"\bresidential block\b",
    ]
    BUSY_PATTERNS: list[str] = [
        r"\bbusy (?:street|avenue|area)\b",
        r"\bnoisy\b",
        r"\blively\b",
        r"\bbustling\b",
        r"\bnightlife\b",
    ]

    NEGATION_PATTERNS: list[str] = [
        r"\bno\b",
        r"\bnot\b",
        r"\bwithout\b",
        r"\blacks?\b",
        r"\bnone\b",
        r"\bdoes not have\b",
        r"\bdoesn't have\b",
        r"\bnot allowed\b",
        r"\bprohibited\b",
    ]

    FEATURE_EXCLUSION_PATTERNS: dict[str, list[str]] = {
        # "bright" describiendo colores o terminaciones, no luz
        "natural_light": [r"\bbright (?:colors?|white|finishes)\b"],
        # Lavanderías del barrio no son del edificio
        "laundry_in_building": [r"\bnearby\b", r"\baround the corner\b", r"\blaundromat\b"],
    }

    def _normalize(self, text: str) -> str:
        normalized = unicodedata.normalize("NFKD", text or "")
        ascii_text = normalized.encode("ascii", "ignore").decode("ascii")
        return re.sub(r"\s+", " ", ascii_text).strip()

    def _split_sentences(self, text: str) -> list[str]:
        return [s.strip() for s in re.split(r"[.!?\n;:]+", text) if s.strip()]

    def _is_negated(self, sentence: str, keyword_pattern: str) -> bool:
        for match in re.finditer(keyword_pattern, sentence, flags=re.IGNORECASE):
            start = max(0, match.start() - 30)
            end = min(len(sentence), match.end() + 15)
            window = sentence[start:end]
            for neg_pattern in self.NEGATION_PATTERNS:
                if re.search(neg_pattern, window, flags=re.IGNORECASE):
                    return True
        return False

    def _is_excluded_context(self, feature: str, sentence: str) -> bool:
        exclusion_patterns = self.FEATURE_EXCLUSION_PATTERNS.get(feature, [])
        for pattern in exclusion_patterns:
            if re.search(pattern, sentence, flags=re.IGNORECASE):
                return True
        return False

    def _matches_any(self, sentences: list[str], patterns: list[str], negatable: bool = True) -> bool:
        for sentence in sentences:
            for pattern in patterns:
                if re.search(pattern, sentence, flags=re.IGNORECASE):
                    if negatable and self._is_negated(sentence, pattern):
                        continue
                    return True
        return False

    def detect_features(self, text: str) -> dict[str, bool]:
        sentences = self._split_sentences(self._normalize(text))

        results = {feature: False for feature in self.FEATURE_PATTERNS}
        for sentence in sentences:
            for feature, patterns in self.FEATURE_PATTERNS.items():
                if results[feature]:
                    continue
                for pattern in patterns:
                    if re.search(pattern, sentence, flags=re.IGNORECASE):
                        if not self._is_negated(sentence, pattern):
                            if self._is_excluded_context(feature, sentence):
                                continue
                            results[feature] = True
                            break
        return results

    def detect_subway_lines(self, text: str) -> list[str]:
        """Líneas mencionadas como 'A, C and E trains' o 'the Q line'."""
        lines: list[str] = []
        # Case-sensitive: la 'A' de "A short walk" no es una línea
        for match in re.finditer(LINE_GROUP_PATTERN, self._normalize(text)):
            for line in re.findall(rf"\b{_LINE}\b", match.group(1)):
                if line in SUBWAY_LINES and line not in lines:
                    lines.append(line)
        return lines

    def detect_building_type(self, text: str, has_elevator: bool) -> str:
        sentences = self._split_sentences(self._normalize(text))
        if self._matches_any(sentences, self.WALKUP_PATTERNS, negatable=False):
            return "walkup"
        if has_elevator:
            return "elevator"
        return "unknown"

    def detect_noise_level(self, text: str) -> str:
        sentences = self._split_sentences(self._normalize(text))
        if self._matches_any(sentences, self.QUIET_PATTERNS):
            return "quiet"
        if self._matches_any(sentences, self.BUSY_PATTERNS):
            return "average"
        return "unknown"

    def detect_tags(self, text: str) -> ListingTags:
        """Arma ListingTags completos a partir del texto."""
        features = self.detect_features(text)
        building = self.detect_building_type(text, features["elevator"])
        if building == "walkup":
            features["elevator"] = False

        return ListingTags(
            **features,
            near_subway_lines=self.detect_subway_lines(text),
            noise_level=self.detect_noise_level(text),
            building_type=building,
        )
