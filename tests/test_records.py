import pytest

from ipa_keytabs.errors import ConfigError, ConsistencyError, FormatError, ValidationError
from ipa_keytabs.records import parse_line, parse_lines, read_records, split_principal


USER_LINE = "node1.example.com,HDFS,hdfs@EXAMPLE.COM,hdfs.keytab,/etc/security/keytabs,hdfs,hadoop,0400"
SERVICE_LINE = (
    "node1.example.com,NameNode,nn/node1.example.com@EXAMPLE.COM,nn.service.keytab,"
    "/etc/security/keytabs,hdfs,hadoop,0400"
)


def test_user_principal_line():
    rec = parse_line(USER_LINE, 1)

    assert rec.host == "node1.example.com"
    assert rec.description == "HDFS"
    assert rec.principal == "hdfs@EXAMPLE.COM"
    assert rec.user == "hdfs"
    assert rec.host_component is None
    assert rec.domain == "EXAMPLE.COM"
    assert rec.keytab_name == "hdfs.keytab"
    assert rec.keytab_dir == "/etc/security/keytabs"
    assert (rec.owner, rec.group, rec.perm) == ("hdfs", "hadoop", "0400")
    assert rec.is_service is False


def test_service_principal_line():
    rec = parse_line(SERVICE_LINE, 7)

    assert rec.is_service is True
    assert rec.user == "nn"
    assert rec.host_component == "node1.example.com"
    assert rec.line_no == 7
    assert rec.keytab_path == "/etc/security/keytabs/nn.service.keytab"
    assert rec.export_dir == "/etc/security/keytabs/node1.example.com"
    assert rec.export_path == "/etc/security/keytabs/node1.example.com/nn.service.keytab"


def test_fields_are_trimmed():
    line = " node1.example.com , HDFS ,hdfs@EXAMPLE.COM, hdfs.keytab,/etc/security/keytabs ,hdfs,hadoop, 440 \n"
    rec = parse_line(line, 1)

    assert rec.host == "node1.example.com"
    assert rec.description == "HDFS"
    assert rec.keytab_name == "hdfs.keytab"
    assert rec.keytab_dir == "/etc/security/keytabs"
    assert rec.perm == "440"
    assert rec.mode == 0o440


@pytest.mark.parametrize(
    "line",
    [
        "node1.example.com,HDFS,hdfs@EXAMPLE.COM,hdfs.keytab,/etc/security/keytabs,hdfs,hadoop",
        USER_LINE + ",extra",
        "",
        "node1.example.com,,hdfs@EXAMPLE.COM,hdfs.keytab,/etc/security/keytabs,hdfs,hadoop,0400",
    ],
)
def test_wrong_field_count_is_format_error(line):
    with pytest.raises(FormatError) as exc:
        parse_line(line, 12)
    assert exc.value.line_no == 12
    assert "line 12" in str(exc.value)


@pytest.mark.parametrize(
    "index,value,field",
    [
        (0, "node_1.example.com", "host"),
        (0, "-node1.example.com", "host"),
        (1, "Name/Node", "description"),
        (2, "hdfs", "principal"),
        (2, "hdfs@", "principal"),
        (2, "nn/@EXAMPLE.COM", "principal"),
        (3, "nn/service.keytab", "keytab name"),
        (3, "..", "keytab name"),
        (4, "/etc/security/../keytabs", "keytab dir"),
        (4, "/etc/security keytabs", "keytab dir"),
        (5, "hd fs", "owner"),
        (6, "1hadoop", "group"),
        (7, "0800", "perm"),
        (7, "40", "perm"),
        (7, "00400", "perm"),
    ],
)
def test_invalid_field_is_validation_error(index, value, field):
    fields = USER_LINE.split(",")
    fields[index] = value

    with pytest.raises(ValidationError) as exc:
        parse_line(",".join(fields), 3)

    assert exc.value.field == field
    assert exc.value.line_no == 3
    assert exc.value.expected


def test_host_component_must_match_host():
    line = SERVICE_LINE.replace("node1.example.com,NameNode", "node2.example.com,NameNode", 1)

    with pytest.raises(ConsistencyError) as exc:
        parse_line(line, 4)

    assert exc.value.line_no == 4
    assert exc.value.value == "node1.example.com"
    assert exc.value.expected == "node2.example.com"


def test_split_principal():
    assert split_principal("nn/node1.example.com@EXAMPLE.COM") == ("nn", "node1.example.com", "EXAMPLE.COM")
    assert split_principal("ambari-qa@EXAMPLE.COM") == ("ambari-qa", None, "EXAMPLE.COM")
    assert split_principal("no-realm") is None
    assert split_principal("a/b/c@EXAMPLE.COM") is None


def test_parse_lines_skips_blank_lines_and_counts_them():
    lines = [USER_LINE + "\n", "\n", "   \n", "bad line\n"]

    with pytest.raises(FormatError) as exc:
        parse_lines(lines)
    assert exc.value.line_no == 4


def test_read_records_keeps_csv_order(tmp_path):
    csv = tmp_path / "principals.csv"
    csv.write_text(SERVICE_LINE + "\n" + USER_LINE + "\n", encoding="utf-8")

    records = read_records(csv)

    assert [r.principal for r in records] == ["nn/node1.example.com@EXAMPLE.COM", "hdfs@EXAMPLE.COM"]
    assert [r.line_no for r in records] == [1, 2]


def test_read_records_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        read_records(tmp_path / "missing.csv")
