"""
Halving schedule projection
Locates the next subsidy breakpoint for a DAA score and projects when it is reached
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, asdict
import re
from typing import Any, Dict, NamedTuple, Optional, Sequence

logger = logging.getLogger(__name__)

_DATE_RE = re.compile(r"([+-]?\d{4,})-(\d{2})-(\d{2}) (\d{2}):(\d{2}):(\d{2}) UTC")
_I64_MASK = (1 << 64) - 1
_I64_SIGN = 1 << 63


# ==================== DATA MODELS ====================


class ScheduleBreakpoint(NamedTuple):
    """DAA threshold and the subsidy (in KAS) that starts there"""

    daa_threshold: int
    subsidy_at_threshold: float


@dataclass(frozen=True)
class HalvingProjection:
    """Projected next halving"""

    next_halving_timestamp: int
    next_halving_date: str
    next_halving_amount: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ==================== SCHEDULE ====================

# Subsidy per block, stepping once a month (2629800 DAA) from the start of
# the deflationary phase.
_SCHEDULE_DATA = (
    ScheduleBreakpoint(15519600, 500.0),
    ScheduleBreakpoint(18149400, 440.0),
    ScheduleBreakpoint(20779200, 415.30469757),
    ScheduleBreakpoint(23409000, 391.99543598),
    ScheduleBreakpoint(26038800, 369.99442271),
    ScheduleBreakpoint(28668600, 349.22823143),
    ScheduleBreakpoint(31298400, 329.62755691),
    ScheduleBreakpoint(33928200, 311.12698372),
    ScheduleBreakpoint(36558000, 293.66476791),
    ScheduleBreakpoint(39187800, 277.18263097),
    ScheduleBreakpoint(41817600, 261.6255653),
    ScheduleBreakpoint(44447400, 246.94165062),
    ScheduleBreakpoint(47077200, 233.08188075),
    ScheduleBreakpoint(49707000, 220.0),
    ScheduleBreakpoint(52336800, 207.65234878),
    ScheduleBreakpoint(54966600, 195.99771799),
    ScheduleBreakpoint(57596400, 184.99721135),
    ScheduleBreakpoint(60226200, 174.61411571),
    ScheduleBreakpoint(62856000, 164.81377845),
    ScheduleBreakpoint(65485800, 155.56349186),
    ScheduleBreakpoint(68115600, 146.83238395),
    ScheduleBreakpoint(70745400, 138.59131548),
    ScheduleBreakpoint(73375200, 130.81278265),
    ScheduleBreakpoint(76005000, 123.47082531),
    ScheduleBreakpoint(78634800, 116.54094037),
    ScheduleBreakpoint(81264600, 110.0),
    ScheduleBreakpoint(83894400, 103.82617439),
    ScheduleBreakpoint(86524200, 97.99885899),
    ScheduleBreakpoint(89154000, 92.49860567),
    ScheduleBreakpoint(91783800, 87.30705785),
    ScheduleBreakpoint(94413600, 82.40688922),
    ScheduleBreakpoint(97043400, 77.78174593),
    ScheduleBreakpoint(99673200, 73.41619197),
    ScheduleBreakpoint(102303000, 69.29565774),
    ScheduleBreakpoint(104932800, 65.40639132),
    ScheduleBreakpoint(107562600, 61.73541265),
    ScheduleBreakpoint(110192400, 58.27047018),
    ScheduleBreakpoint(112822200, 55.0),
    ScheduleBreakpoint(115452000, 51.91308719),
    ScheduleBreakpoint(118081800, 48.99942949),
    ScheduleBreakpoint(120711600, 46.24930283),
    ScheduleBreakpoint(123341400, 43.65352892),
    ScheduleBreakpoint(125971200, 41.20344461),
    ScheduleBreakpoint(128601000, 38.89087296),
    ScheduleBreakpoint(131230800, 36.70809598),
    ScheduleBreakpoint(133860600, 34.64782887),
    ScheduleBreakpoint(136490400, 32.70319566),
    ScheduleBreakpoint(139120200, 30.86770632),
    ScheduleBreakpoint(141750000, 29.13523509),
    ScheduleBreakpoint(144379800, 27.5),
    ScheduleBreakpoint(147009600, 25.95654359),
    ScheduleBreakpoint(149639400, 24.49971474),
    ScheduleBreakpoint(152269200, 23.12465141),
    ScheduleBreakpoint(154899000, 21.82676446),
    ScheduleBreakpoint(157528800, 20.6017223),
    ScheduleBreakpoint(160158600, 19.44543648),
    ScheduleBreakpoint(162788400, 18.35404799),
    ScheduleBreakpoint(165418200, 17.32391443),
    ScheduleBreakpoint(168048000, 16.35159783),
    ScheduleBreakpoint(170677800, 15.43385316),
    ScheduleBreakpoint(173307600, 14.56761754),
    ScheduleBreakpoint(175937400, 13.75),
    ScheduleBreakpoint(178567200, 12.97827179),
    ScheduleBreakpoint(181197000, 12.24985737),
    ScheduleBreakpoint(183826800, 11.5623257),
    ScheduleBreakpoint(186456600, 10.91338223),
    ScheduleBreakpoint(189086400, 10.30086115),
    ScheduleBreakpoint(191716200, 9.72271824),
    ScheduleBreakpoint(194346000, 9.17702399),
    ScheduleBreakpoint(196975800, 8.66195721),
    ScheduleBreakpoint(199605600, 8.17579891),
    ScheduleBreakpoint(202235400, 7.71692658),
    ScheduleBreakpoint(204865200, 7.28380877),
    ScheduleBreakpoint(207495000, 6.875),
    ScheduleBreakpoint(210124800, 6.48913589),
    ScheduleBreakpoint(212754600, 6.12492868),
    ScheduleBreakpoint(215384400, 5.78116285),
    ScheduleBreakpoint(218014200, 5.45669111),
    ScheduleBreakpoint(220644000, 5.15043057),
    ScheduleBreakpoint(223273800, 4.86135912),
    ScheduleBreakpoint(225903600, 4.58851199),
    ScheduleBreakpoint(228533400, 4.3309786),
    ScheduleBreakpoint(231163200, 4.08789945),
    ScheduleBreakpoint(233793000, 3.85846329),
    ScheduleBreakpoint(236422800, 3.64190438),
    ScheduleBreakpoint(239052600, 3.4375),
    ScheduleBreakpoint(241682400, 3.24456794),
    ScheduleBreakpoint(244312200, 3.06246434),
    ScheduleBreakpoint(246942000, 2.89058142),
    ScheduleBreakpoint(249571800, 2.72834555),
    ScheduleBreakpoint(252201600, 2.57521528),
    ScheduleBreakpoint(254831400, 2.43067956),
    ScheduleBreakpoint(257461200, 2.29425599),
    ScheduleBreakpoint(260091000, 2.1654893),
    ScheduleBreakpoint(262720800, 2.04394972),
    ScheduleBreakpoint(265350600, 1.92923164),
    ScheduleBreakpoint(267980400, 1.82095219),
    ScheduleBreakpoint(270610200, 1.71875),
    ScheduleBreakpoint(273240000, 1.62228397),
    ScheduleBreakpoint(275869800, 1.53123217),
    ScheduleBreakpoint(278499600, 1.44529071),
    ScheduleBreakpoint(281129400, 1.36417277),
    ScheduleBreakpoint(283759200, 1.28760764),
    ScheduleBreakpoint(286389000, 1.21533978),
    ScheduleBreakpoint(289018800, 1.14712799),
    ScheduleBreakpoint(291648600, 1.08274465),
    ScheduleBreakpoint(294278400, 1.02197486),
    ScheduleBreakpoint(296908200, 0.96461582),
    ScheduleBreakpoint(299538000, 0.91047609),
    ScheduleBreakpoint(302167800, 0.859375),
    ScheduleBreakpoint(304797600, 0.81114198),
    ScheduleBreakpoint(307427400, 0.76561608),
    ScheduleBreakpoint(310057200, 0.72264535),
    ScheduleBreakpoint(312687000, 0.68208638),
    ScheduleBreakpoint(315316800, 0.64380382),
    ScheduleBreakpoint(317946600, 0.60766989),
    ScheduleBreakpoint(320576400, 0.57356399),
    ScheduleBreakpoint(323206200, 0.54137232),
    ScheduleBreakpoint(325836000, 0.51098743),
    ScheduleBreakpoint(328465800, 0.48230791),
    ScheduleBreakpoint(331095600, 0.45523804),
    ScheduleBreakpoint(333725400, 0.4296875),
    ScheduleBreakpoint(336355200, 0.40557099),
    ScheduleBreakpoint(338985000, 0.38280804),
    ScheduleBreakpoint(341614800, 0.36132267),
    ScheduleBreakpoint(344244600, 0.34104319),
    ScheduleBreakpoint(346874400, 0.32190191),
    ScheduleBreakpoint(349504200, 0.30383494),
    ScheduleBreakpoint(352134000, 0.28678199),
    ScheduleBreakpoint(354763800, 0.27068616),
    ScheduleBreakpoint(357393600, 0.25549371),
    ScheduleBreakpoint(360023400, 0.24115395),
    ScheduleBreakpoint(362653200, 0.22762313),
    ScheduleBreakpoint(365283000, 0.21476591),
    ScheduleBreakpoint(367912800, 0.20265196),
    ScheduleBreakpoint(370542600, 0.19123776),
    ScheduleBreakpoint(373172400, 0.18049956),
    ScheduleBreakpoint(375802200, 0.17043676),
    ScheduleBreakpoint(378432000, 0.1610347),
    ScheduleBreakpoint(381061800, 0.15229382),
    ScheduleBreakpoint(383691600, 0.14422656),
    ScheduleBreakpoint(386321400, 0.13678283),
    ScheduleBreakpoint(388951200, 0.12994654),
    ScheduleBreakpoint(391581000, 0.12370799),
    ScheduleBreakpoint(394210800, 0.11804224),
    ScheduleBreakpoint(396840600, 0.11296396),
    ScheduleBreakpoint(399470400, 0.10847332),
    ScheduleBreakpoint(402100200, 0.10458033),
    ScheduleBreakpoint(404730000, 0.10131789),
    ScheduleBreakpoint(407359800, 0.09862433),
    ScheduleBreakpoint(409989600, 0.09657248),
    ScheduleBreakpoint(412619400, 0.09508814),
    ScheduleBreakpoint(415249200, 0.09417745),
    ScheduleBreakpoint(417879000, 0.09383286),
    ScheduleBreakpoint(420508800, 0.09409615),
    ScheduleBreakpoint(423138600, 0.09493826),
    ScheduleBreakpoint(425768400, 0.09631169),
    ScheduleBreakpoint(428398200, 0.09815882),
    ScheduleBreakpoint(431028000, 0.1004122),
    ScheduleBreakpoint(433657800, 0.10305375),
    ScheduleBreakpoint(436287600, 0.10602993),
    ScheduleBreakpoint(438917400, 0.10933378),
    ScheduleBreakpoint(441547200, 0.11302845),
    ScheduleBreakpoint(444177000, 0.11707016),
    ScheduleBreakpoint(446806800, 0.12144084),
    ScheduleBreakpoint(449436600, 0.12613759),
    ScheduleBreakpoint(452066400, 0.13112062),
    ScheduleBreakpoint(454696200, 0.13643943),
    ScheduleBreakpoint(457326000, 0.14209691),
    ScheduleBreakpoint(459955800, 0.1480862),
    ScheduleBreakpoint(462585600, 0.15443784),
    ScheduleBreakpoint(465215400, 0.16114343),
    ScheduleBreakpoint(467845200, 0.16818979),
    ScheduleBreakpoint(470475000, 0.17564051),
    ScheduleBreakpoint(473104800, 0.18346341),
    ScheduleBreakpoint(475734600, 0.1917266),
    ScheduleBreakpoint(478364400, 0.20051084),
    ScheduleBreakpoint(480994200, 0.20983509),
    ScheduleBreakpoint(483624000, 0.21971124),
    ScheduleBreakpoint(486253800, 0.2301438),
    ScheduleBreakpoint(488883600, 0.24113258),
    ScheduleBreakpoint(491513400, 0.25268619),
    ScheduleBreakpoint(494143200, 0.26479714),
    ScheduleBreakpoint(496773000, 0.27746917),
    ScheduleBreakpoint(499402800, 0.29071021),
    ScheduleBreakpoint(502032600, 0.30452164),
    ScheduleBreakpoint(504662400, 0.31889863),
    ScheduleBreakpoint(507292200, 0.33384339),
    ScheduleBreakpoint(509922000, 0.34935715),
    ScheduleBreakpoint(512551800, 0.36544036),
    ScheduleBreakpoint(515181600, 0.38209539),
    ScheduleBreakpoint(517811400, 0.39932595),
    ScheduleBreakpoint(520441200, 0.41712519),
    ScheduleBreakpoint(523071000, 0.43550739),
    ScheduleBreakpoint(525700800, 0.45447742),
    ScheduleBreakpoint(528330600, 0.47402891),
    ScheduleBreakpoint(530960400, 0.49415404),
    ScheduleBreakpoint(533590200, 0.51483542),
    ScheduleBreakpoint(536220000, 0.53607358),
    ScheduleBreakpoint(538849800, 0.5578492),
    ScheduleBreakpoint(541479600, 0.58013131),
    ScheduleBreakpoint(544109400, 0.60290554),
    ScheduleBreakpoint(546739200, 0.62616163),
    ScheduleBreakpoint(549369000, 0.64988689),
    ScheduleBreakpoint(552998800, 0.67406554),
    ScheduleBreakpoint(555628600, 0.69868107),
    ScheduleBreakpoint(558258400, 0.72370715),
    ScheduleBreakpoint(560888200, 0.74914643),
    ScheduleBreakpoint(563518000, 0.77504293),
    ScheduleBreakpoint(566147800, 0.80140805),
    ScheduleBreakpoint(568777600, 0.82824862),
    ScheduleBreakpoint(571407400, 0.85558615),
    ScheduleBreakpoint(574037200, 0.88342548),
    ScheduleBreakpoint(576667000, 0.91176738),
    ScheduleBreakpoint(579296800, 0.94061089),
    ScheduleBreakpoint(581926600, 0.96995827),
    ScheduleBreakpoint(584556400, 0.99981739),
    ScheduleBreakpoint(587186200, 1.03018801),
    ScheduleBreakpoint(589816000, 1.06108733),
    ScheduleBreakpoint(592445800, 1.09250556),
    ScheduleBreakpoint(595075600, 1.12446462),
    ScheduleBreakpoint(597705400, 1.15704183),
    ScheduleBreakpoint(600335200, 1.19029283),
    ScheduleBreakpoint(602965000, 1.22431324),
    ScheduleBreakpoint(605594800, 1.25908533),
    ScheduleBreakpoint(608224600, 1.29464635),
    ScheduleBreakpoint(610854400, 1.33104201),
    ScheduleBreakpoint(613484200, 1.36830438),
    ScheduleBreakpoint(616114000, 1.40644768),
    ScheduleBreakpoint(618743800, 1.44545977),
    ScheduleBreakpoint(621373600, 1.48542605),
    ScheduleBreakpoint(624003400, 1.52629285),
    ScheduleBreakpoint(626633200, 1.56805948),
    ScheduleBreakpoint(629263000, 1.61073863),
    ScheduleBreakpoint(631892800, 1.65433896),
    ScheduleBreakpoint(634522600, 1.69885337),
    ScheduleBreakpoint(637152400, 1.74430241),
    ScheduleBreakpoint(639782200, 1.7906807),
    ScheduleBreakpoint(642412000, 1.83802013),
    ScheduleBreakpoint(645041800, 1.88630739),
    ScheduleBreakpoint(647671600, 1.93554642),
    ScheduleBreakpoint(650301400, 1.98574777),
    ScheduleBreakpoint(652931200, 2.03690322),
    ScheduleBreakpoint(655561000, 2.08902358),
    ScheduleBreakpoint(658190800, 2.14211662),
    ScheduleBreakpoint(660820600, 2.19606986),
    ScheduleBreakpoint(663450400, 2.25097958),
    ScheduleBreakpoint(666080200, 2.30696614),
    ScheduleBreakpoint(668710000, 2.36403037),
    ScheduleBreakpoint(671339800, 2.4222131),
    ScheduleBreakpoint(673969600, 2.48157869),
    ScheduleBreakpoint(676599400, 2.54203909),
    ScheduleBreakpoint(679229200, 2.60360241),
    ScheduleBreakpoint(681859000, 2.66619334),
    ScheduleBreakpoint(684488800, 2.72984534),
    ScheduleBreakpoint(687118600, 2.79456452),
    ScheduleBreakpoint(689748400, 2.86038066),
    ScheduleBreakpoint(692378200, 2.92734309),
    ScheduleBreakpoint(695008000, 2.99543411),
    ScheduleBreakpoint(697637800, 3.06465069),
    ScheduleBreakpoint(700267600, 3.13497407),
    ScheduleBreakpoint(702897400, 3.2064109),
    ScheduleBreakpoint(705527200, 3.27896566),
    ScheduleBreakpoint(708157000, 3.35261108),
)


def verify_schedule(schedule: Sequence[ScheduleBreakpoint]) -> None:
    """Raise ValueError unless the schedule is non-empty and strictly ascending"""
    if not schedule:
        raise ValueError("Halving schedule is empty")

    for previous, current in zip(schedule, schedule[1:]):
        if current.daa_threshold <= previous.daa_threshold:
            raise ValueError(
                f"Halving schedule not ascending at DAA {current.daa_threshold} "
                f"(after {previous.daa_threshold})"
            )


def build_schedule(breakpoints: Sequence[ScheduleBreakpoint]) -> tuple[ScheduleBreakpoint, ...]:
    """Sort breakpoints by threshold, verify and freeze them"""
    schedule = tuple(sorted(breakpoints, key=lambda b: b.daa_threshold))
    verify_schedule(schedule)
    return schedule


HALVING_SCHEDULE = build_schedule(_SCHEDULE_DATA)


# ==================== PROJECTION ====================


def _wrap_i64(value: int) -> int:
    value &= _I64_MASK
    return value - (1 << 64) if value & _I64_SIGN else value


def _days_from_civil(year: int, month: int, day: int) -> int:
    """Days since 1970-01-01 in the proleptic Gregorian calendar"""
    year -= month <= 2
    era = year // 400
    yoe = year - era * 400
    doy = (153 * (month + (-3 if month > 2 else 9)) + 2) // 5 + day - 1
    doe = yoe * 365 + yoe // 4 - yoe // 100 + doy
    return era * 146097 + doe - 719468


def _civil_from_days(days: int) -> tuple[int, int, int]:
    """Inverse of _days_from_civil"""
    days += 719468
    era = days // 146097
    doe = days - era * 146097
    yoe = (doe - doe // 1460 + doe // 36524 - doe // 146096) // 365
    doy = doe - (365 * yoe + yoe // 4 - yoe // 100)
    mp = (5 * doy + 2) // 153
    day = doy - (153 * mp + 2) // 5 + 1
    month = mp + 3 if mp < 10 else mp - 9
    return yoe + era * 400 + (month <= 2), month, day


def format_timestamp(timestamp: int) -> str:
    """
    Render epoch seconds as a UTC date

    Years 0-9999 are four digits; others carry an explicit sign, so any
    signed 64-bit timestamp has a rendering.
    """
    days, seconds = divmod(timestamp, 86400)
    year, month, day = _civil_from_days(days)
    hour, rest = divmod(seconds, 3600)
    minute, second = divmod(rest, 60)

    year_text = f"{year:04d}" if 0 <= year <= 9999 else f"{year:+05d}"
    return f"{year_text}-{month:02d}-{day:02d} {hour:02d}:{minute:02d}:{second:02d} UTC"


def parse_date(value: str) -> int:
    """Inverse of format_timestamp"""
    match = _DATE_RE.fullmatch(value)
    if not match:
        raise ValueError(f"Not a UTC date: {value!r}")

    year, month, day, hour, minute, second = (int(part) for part in match.groups())
    if not (1 <= month <= 12 and 1 <= day <= 31 and hour < 24 and minute < 60 and second < 60):
        raise ValueError(f"Date out of range: {value!r}")

    days = _days_from_civil(year, month, day)
    if _civil_from_days(days) != (year, month, day):
        raise ValueError(f"No such day: {value!r}")
    return days * 86400 + hour * 3600 + minute * 60 + second



def find_next_breakpoint(
    daa_score: int, schedule: Sequence[ScheduleBreakpoint] = HALVING_SCHEDULE
) -> tuple[int, float]:
    """
    Find the next halving for a DAA score

    Returns (target_threshold, future_subsidy). The target is the first
    threshold strictly above the score; the subsidy is the one stored on the
    breakpoint after it. Both are zero when the score is at or past the last
    two breakpoints.
    """
    for i, breakpoint in enumerate(schedule):
        if daa_score < breakpoint.daa_threshold:
            if i + 1 < len(schedule):
                return breakpoint.daa_threshold, schedule[i + 1].subsidy_at_threshold
            break

    return 0, 0.0


def project(
    daa_score: int,
    schedule: Sequence[ScheduleBreakpoint] = HALVING_SCHEDULE,
    now: Optional[int] = None,
) -> HalvingProjection:
    """
    Project the next halving from the current DAA score

    Args:
        daa_score: DAA score of the latest block
        schedule: Breakpoints sorted ascending by threshold
        now: Current Unix time in seconds (defaults to the system clock)
    """
    if now is None:
        now = int(time.time())

    target, future_subsidy = find_next_breakpoint(daa_score, schedule)
    if target == 0:
        logger.debug(f"DAA score {daa_score} is past the halving schedule")

    # One DAA step is taken as one second of wall-clock time.
    timestamp = _wrap_i64(now + _wrap_i64(_wrap_i64(target) - _wrap_i64(daa_score)))

    return HalvingProjection(
        next_halving_timestamp=timestamp,
        next_halving_date=format_timestamp(timestamp),
        next_halving_amount=future_subsidy,
    )
