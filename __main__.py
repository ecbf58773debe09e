import pulumi
from gcpwarehouse.builder import ResourceBuilder
from gcpwarehouse.config import load_config, parse_config
from gcpwarehouse.lint import WARNING, lint_config, raise_for_findings


def main():
    # Load YAML configuration; a stack may point at its own file.
    config_file = pulumi.Config().get("configFile") or "config.yaml"
    config_data = load_config(config_file)
    warehouse = parse_config(config_data)

    findings = lint_config(warehouse)
    for finding in findings:
        if finding.severity == WARNING:
            pulumi.log.warn(str(finding))
    try:
        raise_for_findings(findings)
    except ValueError as e:
        pulumi.log.error(f"Invalid warehouse configuration '{config_file}': {e}")
        raise

    try:
        builder = ResourceBuilder(warehouse)
    except Exception as e:
        pulumi.log.error(f"Failed to initialize ResourceBuilder: {e}")
        raise

    try:
        builder.build()
    except Exception as e:
        pulumi.log.error(f"Failed during resource build: {e}")
        raise

    # Export resource IDs and sink writer identities.
    for name, output in builder.exports().items():
        try:
            pulumi.export(name, output)
        except Exception as e:
            pulumi.log.warn(f"Failed to export resource '{name}': {e}")

if __name__ == "__main__":
    main()
